"""
Extraction Engine boundary.

The harness treats the engine as a black box with a single operation:

    extract(transcript_text, case_metadata, config) -> ExtractedFields | dict

Engines MUST be stateless between calls: no cache or mutable field may
carry anything from one case into the next. verify_engine_isolation()
checks this contract for a concrete engine.
"""

import importlib
import inspect
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Union, runtime_checkable

from .schemas import EngineConfig, ExtractedFields


@runtime_checkable
class ExtractionEngine(Protocol):
    """Structural type every extraction engine satisfies."""

    def extract(
        self,
        transcript_text: str,
        case_metadata: Mapping[str, Any],
        config: EngineConfig,
    ) -> Union[ExtractedFields, Dict[str, Any]]:
        ...


def normalize_output(raw: Union[ExtractedFields, Mapping[str, Any], None]) -> ExtractedFields:
    """Coerce whatever the engine returned into ExtractedFields."""
    if isinstance(raw, ExtractedFields):
        return raw
    if raw is None:
        return ExtractedFields()
    if not isinstance(raw, Mapping):
        raise TypeError(f"Engine returned {type(raw).__name__}, expected a mapping")
    return ExtractedFields.model_validate(dict(raw))


def load_engine(import_path: str) -> ExtractionEngine:
    """
    Load an engine from an import path of the form "package.module:attr".

    If attr is a class or factory it is called with no arguments.
    """
    module_name, _, attr = import_path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Engine path must look like 'module:attr', got {import_path!r}")

    module = importlib.import_module(module_name)
    target = getattr(module, attr)
    engine = target() if callable(target) and not hasattr(target, "extract") else target
    if inspect.isclass(engine):
        engine = engine()

    if not isinstance(engine, ExtractionEngine):
        raise TypeError(f"{import_path} does not provide an extract() method")
    return engine


def engine_source_files(engine: Any) -> List[Path]:
    """Return the module file defining the engine's class."""
    source = inspect.getsourcefile(type(engine))
    return [Path(source)] if source else []


def verify_engine_isolation(
    engine: ExtractionEngine,
    transcripts: Sequence[str],
    config: Optional[EngineConfig] = None,
) -> List[int]:
    """
    Check the stateless-call contract.

    Each transcript is extracted once on its own, then the whole sequence
    is extracted forwards and backwards. Any transcript whose output
    depends on what ran before it is reported.

    Returns:
        Indexes of transcripts whose output changed with call order
        (empty list when the engine is isolated)
    """
    config = config or EngineConfig()

    def run(index: int) -> ExtractedFields:
        return normalize_output(engine.extract(transcripts[index], {}, config))

    isolated = [run(i) for i in range(len(transcripts))]
    forward = [run(i) for i in range(len(transcripts))]
    backward = {i: run(i) for i in reversed(range(len(transcripts)))}

    return [
        i for i in range(len(transcripts))
        if forward[i] != isolated[i] or backward[i] != isolated[i]
    ]
