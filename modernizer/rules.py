"""
Deterministic normalization rules.

This file exists to make the modern dialect conventions explicit and enforceable.
"""

MARKER = "[ syntax = modern"
MARKER_PHRASE = "syntax = modern"

ASSIGNMENT_KEYWORD = "SET"
INVOCATION_KEYWORD = "DO"

SOURCE_SUFFIXES = (".cls", ".mac", ".inc", ".int")
NAMESPACE_PATTERNS = ["*.CLS", "*.MAC", "*.INC", "*.BAS"]

DEFAULT_COMPILE_FLAGS = "cuk"
ATELIER_API_VERSION = 1
