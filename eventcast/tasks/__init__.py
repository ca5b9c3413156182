from .scheduler import (
    TaskScheduler,
    EngineLoops,
    attendance_loop_name,
    PUBLICATION_POLL,
    PUBLICATION_FAST_POLL,
    REMINDER_CHECK,
)
