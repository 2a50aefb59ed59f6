import logging
from concurrent.futures import TimeoutError as FutureTimeoutError

from django.http import JsonResponse, HttpResponseNotAllowed
from django.views.decorators.csrf import csrf_exempt

from ..firebase_service import verify_id_token
from ..http import json_body
from ..runtime import get_runtime

logger = logging.getLogger("calls")


@csrf_exempt
def session_sign_in(request):
    """
    Bind the signed-in user to this client process and start watching
    for incoming calls.

    Body: {"id_token": "<Firebase ID token>"} or, with the memory
    backend, {"user_id": "..."}.
    """
    logger.info(f"[SESSION/SIGN_IN] {request.method} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    data, error = json_body(request)
    if error:
        return error

    runtime = get_runtime()
    id_token = data.get("id_token")
    user_id = None

    if id_token:
        user_id = verify_id_token(id_token)
        if not user_id:
            return JsonResponse({"error": "invalid_id_token"}, status=403)
    elif data.get("user_id") and runtime.store.name == "memory":
        user_id = str(data["user_id"])
    else:
        return JsonResponse({
            "error": "missing_fields",
            "required": ["id_token"],
        }, status=400)

    try:
        state = runtime.sign_in(user_id, data.get("display_name", ""))
    except FutureTimeoutError:
        return JsonResponse({"success": False, "error": "operation_timeout"}, status=504)

    logger.info(f"[SESSION/SIGN_IN] Signed in {user_id}")
    return JsonResponse({"success": True, "userId": user_id, "state": state})


@csrf_exempt
def session_sign_out(request):
    logger.info(f"[SESSION/SIGN_OUT] {request.method} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    runtime = get_runtime()
    try:
        state = runtime.sign_out()
    except FutureTimeoutError:
        return JsonResponse({"success": False, "error": "operation_timeout"}, status=504)

    return JsonResponse({"success": True, "state": state})
