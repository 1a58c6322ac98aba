from typing import Annotated, Optional

from fastapi import Depends

from resqueue.context import QueueContext
from resqueue.settings import settings

_context: Optional[QueueContext] = None

def get_context() -> QueueContext:
    global _context
    if _context is None:
        _context = QueueContext.from_settings(settings)
    return _context

def close_context():
    global _context
    if _context is not None:
        _context.session.reset()
        _context = None

# Dependency for the shared queue context
Context = Annotated[QueueContext, Depends(get_context)]
