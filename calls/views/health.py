from django.http import JsonResponse, HttpResponseNotAllowed
from django.views.decorators.csrf import csrf_exempt

from ..runtime import get_runtime


@csrf_exempt
def health(request):
    if request.method != "GET":
        return HttpResponseNotAllowed(["GET"])

    runtime = get_runtime()
    store_ok = runtime.store.is_available()
    media = runtime.session.media

    return JsonResponse({
        "status": "ok",
        "signaling": runtime.store.name,
        "firestore": "connected" if store_ok else "not_configured",
        "media": media.name,
        "mediaAvailable": media.available,
    })
