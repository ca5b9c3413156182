from .base_service import (
    ServiceResult,
    ServiceError,
    ValidationError,
    NotFoundError,
    ConflictError,
    BaseService,
)
from .publication_orchestrator import PublicationOrchestrator, PublicationResult, UpdateResult, DeleteResult
from .publication_queue import ScheduledPublicationQueue, PollResult
from .reminder_scheduler import ReminderScheduler, format_reminder_message
from .attendance_reconciler import AttendanceReconciler
from .countdown import CountdownService, CountdownRunResult, countdown_interval
from .event_service import EventService
from .image_store import ImageStore, LocalImageStore, HttpImageStore, ImageFile, ImageUploadRequest
from .roster import RosterProvider, StaticRosterProvider, RosterMember
