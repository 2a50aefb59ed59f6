from django.urls import path
from . import views

urlpatterns = [
    # Health check
    path("health", views.health, name="health"),

    # Signed-in user for this client process
    path("session/sign-in", views.session_sign_in, name="session_sign_in"),
    path("session/sign-out", views.session_sign_out, name="session_sign_out"),

    # Platform permission answers reported by the UI
    path("device/microphone", views.device_microphone, name="device_microphone"),

    # Call control (Firestore-signaled)
    path("call/start", views.call_start, name="call_start"),
    path("call/answer", views.call_answer, name="call_answer"),
    path("call/end", views.call_end, name="call_end"),
    path("call/reject", views.call_reject, name="call_reject"),
    path("call/mute", views.call_mute, name="call_mute"),
    path("call/speaker", views.call_speaker, name="call_speaker"),
    path("call/state", views.call_state, name="call_state"),
]
