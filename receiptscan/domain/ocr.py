"""OCR invocation options and normalized OCR output."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, get_args

from receiptscan.domain.errors import ConfigInvalid

PageSegMode = Literal["uniform_block", "single_column", "raw_line", "fully_automatic"]
EngineMode = Literal["legacy_only", "neural_only", "combined"]

PAGE_SEG_MODES: tuple[PageSegMode, ...] = get_args(PageSegMode)
ENGINE_MODES: tuple[EngineMode, ...] = get_args(EngineMode)


@dataclass(frozen=True)
class OcrOptions:
    """Engine settings for a single OCR invocation."""

    language: str = "eng"
    page_seg_mode: PageSegMode = "single_column"
    engine_mode: EngineMode = "neural_only"

    def __post_init__(self) -> None:
        if self.page_seg_mode not in PAGE_SEG_MODES:
            raise ConfigInvalid(
                f"Unknown page segmentation mode {self.page_seg_mode!r}; expected one of {', '.join(PAGE_SEG_MODES)}"
            )
        if self.engine_mode not in ENGINE_MODES:
            raise ConfigInvalid(f"Unknown engine mode {self.engine_mode!r}; expected one of {', '.join(ENGINE_MODES)}")
        if not self.language or not self.language.strip():
            raise ConfigInvalid("OCR language must be a non-empty string")


@dataclass(frozen=True)
class OcrToken:
    """A recognized word with confidence on the [0, 1] scale."""

    text: str
    confidence: float


@dataclass(frozen=True)
class OcrLine:
    """An ordered run of tokens recognized as one text line."""

    tokens: tuple[OcrToken, ...]
    # Set when the engine reports a line-level score; otherwise derived from tokens.
    line_confidence: float | None = None

    @property
    def text(self) -> str:
        return " ".join(token.text for token in self.tokens)

    @property
    def confidence(self) -> float:
        if self.line_confidence is not None:
            return self.line_confidence
        if not self.tokens:
            return 0.0
        return sum(token.confidence for token in self.tokens) / len(self.tokens)

    @classmethod
    def from_text(cls, text: str, confidence: float) -> OcrLine:
        """Build a line from plain text where only a line-level score is known."""
        tokens = tuple(OcrToken(text=word, confidence=confidence) for word in text.split())
        return cls(tokens=tokens, line_confidence=confidence)


@dataclass(frozen=True)
class OcrResult:
    """Normalized output of one OCR invocation.

    ``confidence`` is probability-like in [0, 1] regardless of which engine
    produced it.
    """

    lines: tuple[OcrLine, ...]
    confidence: float
    page_seg_mode: PageSegMode
    engine_mode: EngineMode
    language: str = "eng"
    engine: str = "unknown"
    metadata: dict[str, object] = field(default_factory=dict, compare=False)

    @property
    def text(self) -> str:
        return "\n".join(line.text for line in self.lines)

    @classmethod
    def from_text(
        cls,
        text: str,
        *,
        confidence: float = 0.95,
        page_seg_mode: PageSegMode = "single_column",
        engine_mode: EngineMode = "neural_only",
        engine: str = "text",
    ) -> OcrResult:
        """Wrap plain text (one line per row) as an OCR result with uniform confidence."""
        lines = tuple(OcrLine.from_text(raw, confidence) for raw in text.splitlines() if raw.strip())
        return cls(
            lines=lines,
            confidence=confidence if lines else 0.0,
            page_seg_mode=page_seg_mode,
            engine_mode=engine_mode,
            engine=engine,
        )
