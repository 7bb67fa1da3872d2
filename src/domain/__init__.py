"""
Domain layer - Pure business logic with zero framework imports.

This package contains the registration lifecycle and retry engine: the
eligibility rules, the history ledger semantics, the retry orchestrator and
the gateway error taxonomy. It defines its own port interfaces for
infrastructure abstraction, ensuring true hexagonal architecture decoupling.
"""

from .classifier import ErrorClassification, classify, is_retryable
from .eligibility import Eligibility, EligibilityPolicy, MutationMode, can_modify
from .exceptions import (
    AlreadyCancelled,
    AlreadyRegistered,
    Forbidden,
    GatewayError,
    ImmutableField,
    ModificationNotAllowed,
    NothingToModify,
    RegistrationError,
    RegistrationNotFound,
    RegistrationValidationError,
    RetryRecordNotFound,
    StorageInconsistency,
)
from .ports import Clock, EventCatalog, OrderGateway, RegistrationStore, RetryRecordStore, RetryScheduler
from .registration import RegistrationService
from .retry import BackoffPolicy, RetryOutcome, RetryService

__all__ = [
    "AlreadyCancelled",
    "AlreadyRegistered",
    "BackoffPolicy",
    "Clock",
    "Eligibility",
    "EligibilityPolicy",
    "ErrorClassification",
    "EventCatalog",
    "Forbidden",
    "GatewayError",
    "ImmutableField",
    "ModificationNotAllowed",
    "MutationMode",
    "NothingToModify",
    "OrderGateway",
    "RegistrationError",
    "RegistrationNotFound",
    "RegistrationService",
    "RegistrationStore",
    "RegistrationValidationError",
    "RetryOutcome",
    "RetryRecordNotFound",
    "RetryRecordStore",
    "RetryScheduler",
    "RetryService",
    "StorageInconsistency",
    "can_modify",
    "classify",
    "is_retryable",
]
