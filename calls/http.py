import json
from typing import Tuple

from django.http import JsonResponse

from .errors import CallError, CallResult

ERROR_STATUS = {
    CallError.NOT_AUTHENTICATED: 403,
    CallError.PERMISSION_DENIED: 403,
    CallError.MEDIA_UNAVAILABLE: 503,
    CallError.SIGNALING_WRITE_FAILED: 502,
    CallError.ENGINE_JOIN_FAILED: 502,
    CallError.CALL_IN_PROGRESS: 409,
    CallError.NO_INCOMING_CALL: 409,
    CallError.CALL_NOT_RINGING: 409,
}


def json_body(request) -> Tuple[dict, JsonResponse]:
    try:
        body = request.body.decode("utf-8") if request.body else "{}"
        data = json.loads(body)
        if not isinstance(data, dict):
            raise ValueError("JSON body must be an object")
        return data, None
    except (json.JSONDecodeError, ValueError) as exc:
        return None, JsonResponse({"error": f"invalid_json: {exc}"}, status=400)


def result_response(result: CallResult, state: dict) -> JsonResponse:
    body = result.to_dict()
    body["state"] = state
    if result.success:
        return JsonResponse(body)
    return JsonResponse(body, status=ERROR_STATUS.get(result.error, 400))
