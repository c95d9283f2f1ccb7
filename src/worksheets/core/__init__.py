"""Core document model and sessions.

Modules:
- tools: tool kinds and their per-type response contracts
- exercise: exercise/page/tool document and structural edits
- locking: DRAFT/LOCKED state machine with confirmed transitions
- response: respondent document mirroring a locked exercise
- autosave: cancellable periodic flush task
- chat: conversational tool controller
- timer: page countdown
- alerts: user-facing messages
- authoring: author editing session
- worksheet: respondent editing session
"""

__all__ = [
    "alerts",
    "authoring",
    "autosave",
    "chat",
    "exercise",
    "locking",
    "response",
    "timer",
    "tools",
    "worksheet",
]
