import logging

from django.http import JsonResponse, HttpResponseNotAllowed
from django.views.decorators.csrf import csrf_exempt

from ..http import json_body
from ..runtime import get_runtime

logger = logging.getLogger("calls")


@csrf_exempt
def device_microphone(request):
    """The UI layer reports the platform's microphone permission answer."""
    logger.info(f"[DEVICE/MICROPHONE] {request.method} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    data, error = json_body(request)
    if error:
        return error

    granted = data.get("granted")
    if not isinstance(granted, bool):
        return JsonResponse({"error": "granted_must_be_bool"}, status=400)

    runtime = get_runtime()
    runtime.call(runtime.session.permissions.report, granted)
    return JsonResponse({"success": True, "granted": granted})
