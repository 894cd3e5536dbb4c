"""
Record DataGen

Rule-aware synthetic record generation for schema-driven record stores:
- Local evaluation of declarative validation formulas
- Static dependency and risk analysis of validation rules
- Dependency-ordered, constraint-respecting value generation
- Violation detection, field-local repair and batch pre-validation
"""

__version__ = "1.0.0"
__author__ = "Record DataGen"
