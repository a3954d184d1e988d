from .client import CommandFeedClient
from .models import CommandEnvelope, StatusReport, decode_command

__all__ = [
    "CommandEnvelope",
    "CommandFeedClient",
    "StatusReport",
    "decode_command",
]
