import logging
from concurrent.futures import TimeoutError as FutureTimeoutError

from django.http import JsonResponse, HttpResponseNotAllowed
from django.views.decorators.csrf import csrf_exempt

from ..http import json_body, result_response
from ..runtime import get_runtime

logger = logging.getLogger("calls")


def _timeout_response(tag: str) -> JsonResponse:
    logger.error(f"[{tag}] Operation timed out")
    return JsonResponse({"success": False, "error": "operation_timeout"}, status=504)


def _operation(request, tag, make_coro):
    logger.info(f"[{tag}] {request.method} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    runtime = get_runtime()
    try:
        result = runtime.run(make_coro(runtime.session))
        state = runtime.call(runtime.session.state)
    except FutureTimeoutError:
        return _timeout_response(tag)

    return result_response(result, state)


@csrf_exempt
def call_start(request):
    """
    Start a call - writes the Session Record and the receiver's Inbox Record,
    then joins the media channel.
    """
    logger.info(f"[CALL/START] {request.method} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    data, error = json_body(request)
    if error:
        return error

    logger.info(f"[CALL/START] Request data: {data}")

    receiver_id = data.get("receiver_id")
    receiver_name = data.get("receiver_name", "")
    emergency_id = data.get("emergency_id")

    if not receiver_id:
        return JsonResponse({
            "error": "missing_fields",
            "required": ["receiver_id"],
        }, status=400)

    runtime = get_runtime()
    try:
        result = runtime.run(runtime.session.start_call(receiver_id, receiver_name, emergency_id))
        state = runtime.call(runtime.session.state)
    except FutureTimeoutError:
        return _timeout_response("CALL/START")

    if not result.success:
        logger.warning(f"[CALL/START] Failed: {result.error.value} ({result.message})")
    return result_response(result, state)


@csrf_exempt
def call_answer(request):
    """Answer the incoming call."""
    return _operation(request, "CALL/ANSWER", lambda session: session.answer_call())


@csrf_exempt
def call_end(request):
    """Hang up from any non-idle state."""
    return _operation(request, "CALL/END", lambda session: session.end_call())


@csrf_exempt
def call_reject(request):
    """Reject the incoming call."""
    return _operation(request, "CALL/REJECT", lambda session: session.reject_call())


@csrf_exempt
def call_mute(request):
    logger.info(f"[CALL/MUTE] {request.method} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    runtime = get_runtime()
    try:
        muted = runtime.call(runtime.session.toggle_mute)
        state = runtime.call(runtime.session.state)
    except FutureTimeoutError:
        return _timeout_response("CALL/MUTE")

    return JsonResponse({"success": True, "isMuted": muted, "state": state})


@csrf_exempt
def call_speaker(request):
    logger.info(f"[CALL/SPEAKER] {request.method} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    runtime = get_runtime()
    try:
        speaker_on = runtime.call(runtime.session.toggle_speaker)
        state = runtime.call(runtime.session.state)
    except FutureTimeoutError:
        return _timeout_response("CALL/SPEAKER")

    return JsonResponse({"success": True, "isSpeakerOn": speaker_on, "state": state})


@csrf_exempt
def call_state(request):
    """Local Session View for the UI layer."""
    if request.method != "GET":
        return HttpResponseNotAllowed(["GET"])

    runtime = get_runtime()
    try:
        state = runtime.call(runtime.session.state)
    except FutureTimeoutError:
        return _timeout_response("CALL/STATE")

    return JsonResponse({
        "userId": runtime.session.user_id,
        "state": state,
    })
