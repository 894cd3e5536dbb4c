"""Planning and value generation for candidate records."""

from .field_generators import FieldValueGenerator
from .picklist_decoder import PicklistDecoder, PicklistMapping, decode_valid_for, encode_valid_for
from .planner import GenerationPlan, GenerationPlanner, GenerationStep
from .record_generator import ConstrainedRecordGenerator

__all__ = [
    "ConstrainedRecordGenerator",
    "FieldValueGenerator",
    "GenerationPlan",
    "GenerationPlanner",
    "GenerationStep",
    "PicklistDecoder",
    "PicklistMapping",
    "decode_valid_for",
    "encode_valid_for",
]
