"""Compiler integration: engine contract, configuration, orchestration and navigation."""
from .config import ConfigurationError, Remapping, WorkspaceConfig
from .engine import (
    CompilationResult,
    CompilerEngine,
    Declaration,
    EngineDiagnostic,
    ProgramUnit,
    ReadResult,
    SourceLocation,
    SyntaxNode,
)
from .orchestrator import CompilationOrchestrator
from .resolver import SymbolResolver

__all__ = [
    'CompilationOrchestrator',
    'CompilationResult',
    'CompilerEngine',
    'ConfigurationError',
    'Declaration',
    'EngineDiagnostic',
    'ProgramUnit',
    'ReadResult',
    'Remapping',
    'SourceLocation',
    'SymbolResolver',
    'SyntaxNode',
    'WorkspaceConfig',
]
