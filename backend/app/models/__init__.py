from app.models.module import Module, Submodule
from app.models.path import Path, PathModule
from app.models.branching import BranchingRule
from app.models.progress import ProgressStatus, UserModuleProgress, UserPathProgress, UserSubmoduleProgress
from app.models.question import Question, QuestionType, UserQuestionResponse
from app.models.audit import AuditEvent, AuditEventType

__all__ = [
    "Module",
    "Submodule",
    "Path",
    "PathModule",
    "BranchingRule",
    "ProgressStatus",
    "UserModuleProgress",
    "UserSubmoduleProgress",
    "UserPathProgress",
    "Question",
    "QuestionType",
    "UserQuestionResponse",
    "AuditEvent",
    "AuditEventType",
]
