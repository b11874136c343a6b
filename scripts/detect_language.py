#!/usr/bin/env python3
"""
Language Detector

Detects the natural language and writing script of a text, a JSON array of
texts, or the contents of one or more files. Detection itself is delegated to
the Lingua language detector; this script resolves the input, fans it out into
individual detection requests and prints the results as a single JSON document.

Usage:
    detect_language.py "Your text here"
    detect_language.py --json '["first text", "second text"]'
    detect_language.py --stdin [--json] < input.txt
    detect_language.py -f a.txt -f b.txt [--json]

Output:
    {"Ok": {"confidence": 0.98, "is_reliable": true, "language": "German", "script": "Latin"}}
    {"Error": "Failed to detect language"}

    With --json the per-text objects are wrapped in an array. With --file every
    readable file contributes {"file": "<path>", "results": [...]}; files that
    cannot be read or parsed are skipped and reported on stderr.

Set DETECT_LANGUAGE_LOG_LEVEL (e.g. DEBUG) to control logging. All logging
goes to stderr.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from functools import lru_cache
from pathlib import Path
from typing import BinaryIO, Iterable, Optional, Protocol, Sequence, Union

from lingua import IsoCode639_1, Language, LanguageDetector, LanguageDetectorBuilder
from pydantic import BaseModel, ConfigDict, Field, field_validator

__version__ = "0.3.0"

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DETECTION_FAILED_MESSAGE: str = "Failed to detect language"
NO_FILES_PROCESSED_MESSAGE: str = "Didn't process any file due to errors"

ENV_PREFIX: str = "DETECT_LANGUAGE_"
DEFAULT_LOG_LEVEL: str = "WARNING"
DEFAULT_RELIABILITY_THRESHOLD: float = 0.5
LOG_FORMAT: str = "[%(levelname)s] %(message)s"

JSON_INDENT: int = 2

EXIT_SUCCESS: int = 0
EXIT_FAILURE: int = 1

TRUTHY_VALUES: frozenset[str] = frozenset({"1", "true", "yes"})

# Writing system per Lingua language. Anything not listed is written in Latin.
# Han text is reported as Mandarin, and Japanese by its dominant kana script,
# Hiragana.
SCRIPT_BY_LANGUAGE: dict[str, str] = {
    "ARABIC": "Arabic",
    "PERSIAN": "Arabic",
    "URDU": "Arabic",
    "ARMENIAN": "Armenian",
    "BENGALI": "Bengali",
    "BELARUSIAN": "Cyrillic",
    "BULGARIAN": "Cyrillic",
    "KAZAKH": "Cyrillic",
    "MACEDONIAN": "Cyrillic",
    "MONGOLIAN": "Cyrillic",
    "RUSSIAN": "Cyrillic",
    "SERBIAN": "Cyrillic",
    "UKRAINIAN": "Cyrillic",
    "HINDI": "Devanagari",
    "MARATHI": "Devanagari",
    "GEORGIAN": "Georgian",
    "GREEK": "Greek",
    "GUJARATI": "Gujarati",
    "PUNJABI": "Gurmukhi",
    "CHINESE": "Mandarin",
    "KOREAN": "Hangul",
    "HEBREW": "Hebrew",
    "JAPANESE": "Hiragana",
    "TAMIL": "Tamil",
    "TELUGU": "Telugu",
    "THAI": "Thai",
}
DEFAULT_SCRIPT: str = "Latin"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class LanguageCliError(RuntimeError):
    """Base class for errors that abort (or skip part of) an invocation."""


class EncodingError(LanguageCliError):
    """Raised when raw input bytes are not valid UTF-8."""


class ShapeError(LanguageCliError):
    """Raised when JSON-mode input is not an array of strings."""


class SourceError(LanguageCliError):
    """Raised when a single input file cannot be read or decoded."""

    def __init__(self, path: Path, detail: str) -> None:
        super().__init__(f"{path}: {detail}")
        self.path = path
        self.detail = detail


class AggregationExhausted(LanguageCliError):
    """Raised when every file in a file-mode invocation was skipped."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class DetectorSettings(BaseModel):
    """Runtime configuration resolved from environment."""

    model_config = ConfigDict(frozen=True)

    log_level: str = Field(default=DEFAULT_LOG_LEVEL)
    minimum_relative_distance: float = Field(default=0.0, ge=0.0, lt=1.0)
    reliability_threshold: float = Field(
        default=DEFAULT_RELIABILITY_THRESHOLD,
        ge=0.0,
        le=1.0,
        description="Confidence at or above which a detection is reported as reliable",
    )
    low_accuracy: bool = False
    languages: tuple[str, ...] = Field(
        default=(),
        description="ISO 639-1 codes to restrict detection to; empty means all languages",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            return DEFAULT_LOG_LEVEL
        return level

    @field_validator("languages")
    @classmethod
    def validate_languages(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        codes = tuple(code.strip().upper() for code in value if code.strip())
        if len(codes) == 1:
            raise ValueError("At least two languages are required to restrict detection")
        for code in codes:
            if not hasattr(IsoCode639_1, code):
                raise ValueError(f"Unknown ISO 639-1 language code '{code.lower()}'")
        return codes

    @classmethod
    def from_env(cls) -> DetectorSettings:
        """Build settings from DETECT_LANGUAGE_* environment variables."""
        languages = os.getenv(f"{ENV_PREFIX}LANGUAGES", "")
        return cls(
            log_level=os.getenv(f"{ENV_PREFIX}LOG_LEVEL", DEFAULT_LOG_LEVEL),
            minimum_relative_distance=float(os.getenv(f"{ENV_PREFIX}MIN_DISTANCE", "0.0")),
            reliability_threshold=float(
                os.getenv(f"{ENV_PREFIX}RELIABLE_AT", str(DEFAULT_RELIABILITY_THRESHOLD))
            ),
            low_accuracy=os.getenv(f"{ENV_PREFIX}LOW_ACCURACY", "").lower() in TRUTHY_VALUES,
            languages=tuple(languages.split(",")) if languages else (),
        )


# ---------------------------------------------------------------------------
# Pydantic Models
# ---------------------------------------------------------------------------

class IdentificationResult(BaseModel):
    """Best guess of the language and script of one text."""

    model_config = ConfigDict(frozen=True)

    language: str
    script: str
    confidence: float = Field(ge=0.0, le=1.0)
    is_reliable: bool


class Success(BaseModel):
    """A text whose language was identified."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    result: IdentificationResult = Field(alias="Ok")


class Failure(BaseModel):
    """A text the detector could not identify."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    message: str = Field(alias="Error")


DetectionOutcome = Union[Success, Failure]


class FileResult(BaseModel):
    """Detection outcomes for every text found in one file."""

    model_config = ConfigDict(frozen=True)

    file: str
    results: list[DetectionOutcome] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Identifier Backend
# ---------------------------------------------------------------------------

class LanguageIdentifier(Protocol):
    """Anything that can guess the language of a text, or give up."""

    def identify(self, text: str) -> Optional[IdentificationResult]:
        ...


def script_of(language: Language) -> str:
    """Return the writing system a Lingua language is detected in."""
    return SCRIPT_BY_LANGUAGE.get(language.name, DEFAULT_SCRIPT)


def display_name(language: Language) -> str:
    """Return the English display name of a Lingua language, e.g. 'German'."""
    return language.name.replace("_", " ").title()


class LinguaIdentifier:
    """Wrap a Lingua LanguageDetector built from DetectorSettings."""

    def __init__(self, settings: DetectorSettings | None = None) -> None:
        self._settings = settings or DetectorSettings()
        self._detector = build_detector(self._settings)

    def identify(self, text: str) -> Optional[IdentificationResult]:
        language = self._detector.detect_language_of(text)
        if language is None:
            return None
        confidence = self._detector.compute_language_confidence(text, language)
        confidence = max(0.0, min(1.0, float(confidence)))
        return IdentificationResult(
            language=display_name(language),
            script=script_of(language),
            confidence=confidence,
            is_reliable=confidence >= self._settings.reliability_threshold,
        )


def build_detector(settings: DetectorSettings) -> LanguageDetector:
    """Build a Lingua detector honouring the language restriction and tuning knobs."""
    if settings.languages:
        isos = [getattr(IsoCode639_1, code) for code in settings.languages]
        builder = LanguageDetectorBuilder.from_iso_codes_639_1(*isos)
    else:
        builder = LanguageDetectorBuilder.from_all_languages()

    if settings.minimum_relative_distance > 0:
        builder = builder.with_minimum_relative_distance(settings.minimum_relative_distance)
    if settings.low_accuracy:
        builder = builder.with_low_accuracy_mode()
    return builder.build()


@lru_cache(maxsize=1)
def default_identifier() -> LinguaIdentifier:
    """Return the process-wide Lingua identifier, building it on first use.

    Building loads language models, so it is deferred until a text actually
    needs detecting.
    """
    return LinguaIdentifier(DetectorSettings.from_env())


class _LazyIdentifier:
    """Defer building the default identifier until the first identify() call."""

    def identify(self, text: str) -> Optional[IdentificationResult]:
        return default_identifier().identify(text)


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------

def detect_one(text: str, identifier: LanguageIdentifier | None = None) -> DetectionOutcome:
    """Detect the language of one text, turning a miss into a Failure."""
    identifier = identifier or _LazyIdentifier()
    result = identifier.identify(text)
    if result is None:
        return Failure(message=DETECTION_FAILED_MESSAGE)
    return Success(result=result)


def detect_many(
    texts: Iterable[str],
    identifier: LanguageIdentifier | None = None,
) -> list[DetectionOutcome]:
    """Detect every text independently, preserving input order."""
    identifier = identifier or _LazyIdentifier()
    return [detect_one(text, identifier) for text in texts]


# ---------------------------------------------------------------------------
# Batch Expansion
# ---------------------------------------------------------------------------

def expand(raw_text: str, json_mode: bool) -> list[str]:
    """Turn raw input into the list of texts to detect.

    Plain mode always yields exactly ``[raw_text]``. JSON mode requires the
    whole input to be an array of strings; anything else raises ShapeError
    and nothing from the input is kept.
    """
    if not json_mode:
        return [raw_text]

    try:
        value = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        raise ShapeError(f"Invalid JSON: {exc}") from exc

    if not isinstance(value, list):
        raise ShapeError(
            f"Invalid JSON: expected an array of strings, found {type(value).__name__}"
        )
    for index, item in enumerate(value):
        if not isinstance(item, str):
            raise ShapeError(
                f"Invalid JSON: element {index} is {type(item).__name__}, expected a string"
            )
        # json.loads lets lone surrogates such as "\ud800" through.
        try:
            item.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise ShapeError(
                f"Invalid JSON: element {index} is not valid Unicode"
            ) from exc
    return value


# ---------------------------------------------------------------------------
# Source Resolution
# ---------------------------------------------------------------------------

def read_argument(text: str) -> str:
    """Use command-line text as-is once it is known to be valid UTF-8.

    Non-UTF-8 argv bytes arrive surrogate-escaped on POSIX.
    """
    try:
        text.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise EncodingError(f"Argument is not valid UTF-8: {exc}") from exc
    return text


def read_stdin(stream: BinaryIO | None = None) -> str:
    """Read standard input to end-of-stream and decode it as strict UTF-8.

    Blocks until the writer closes the stream.
    """
    stream = stream if stream is not None else sys.stdin.buffer
    buffer = stream.read()
    try:
        return buffer.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise EncodingError(f"Standard input is not valid UTF-8: {exc}") from exc


def read_file(path: Path) -> str:
    """Read a whole file and decode it as strict UTF-8."""
    try:
        return path.read_bytes().decode("utf-8")
    except OSError as exc:
        raise SourceError(path, exc.strerror or str(exc)) from exc
    except UnicodeDecodeError as exc:
        raise SourceError(path, f"not valid UTF-8: {exc}") from exc


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------

def process_string(
    text: str,
    json_mode: bool,
    identifier: LanguageIdentifier | None = None,
) -> Union[DetectionOutcome, list[DetectionOutcome]]:
    """Detect a single text, or each text of a JSON array."""
    texts = expand(read_argument(text), json_mode)
    results = detect_many(texts, identifier)
    if json_mode:
        return results
    return results[0]


def process_stdin(
    json_mode: bool,
    identifier: LanguageIdentifier | None = None,
    stream: BinaryIO | None = None,
) -> Union[DetectionOutcome, list[DetectionOutcome]]:
    """Same as process_string, with the text read from standard input."""
    return process_string(read_stdin(stream), json_mode, identifier)


def process_files(
    files: Sequence[Path],
    json_mode: bool,
    identifier: LanguageIdentifier | None = None,
    log: logging.Logger = logger,
) -> list[FileResult]:
    """Detect the contents of every file, skipping files that cannot be used.

    A file that cannot be read, is not UTF-8 or (in JSON mode) is not an
    array of strings is logged and left out of the result. Only when every
    file is left out does the whole batch fail.
    """
    identifier = identifier or _LazyIdentifier()
    processed: list[FileResult] = []

    for path in files:
        try:
            text = read_file(path)
        except SourceError as exc:
            log.error("Invalid file %s: %s. Skipping file", path, exc.detail)
            continue

        try:
            texts = expand(text, json_mode)
        except ShapeError as exc:
            log.error("Invalid json in file %s: %s. Skipping file", path, exc)
            continue

        processed.append(
            FileResult(file=str(path), results=detect_many(texts, identifier))
        )

    if not processed:
        raise AggregationExhausted(NO_FILES_PROCESSED_MESSAGE)
    return processed


# ---------------------------------------------------------------------------
# Output Formatting
# ---------------------------------------------------------------------------

def to_jsonable(value: Union[BaseModel, list]) -> object:
    """Dump models (or lists of models) with their wire aliases."""
    if isinstance(value, list):
        return [to_jsonable(item) for item in value]
    return value.model_dump(mode="json", by_alias=True)


def render_json(value: Union[BaseModel, list]) -> str:
    """Render a result as the pretty-printed JSON document written to stdout."""
    return json.dumps(
        to_jsonable(value),
        indent=JSON_INDENT,
        ensure_ascii=False,
        sort_keys=True,
    )


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

OUTPUT_HELP = """\
Results are printed to stdout as JSON:

  {"Ok": {"confidence": float [0,1], "is_reliable": bool,
          "language": string, "script": string}}
  {"Error": "Failed to detect language"}

With --json the results are printed as an array, one object per input string.
With --file every processed file is printed as
  {"file": "path/to/file.txt", "results": [{"Ok": {...}}, ...]}
and files that cannot be read or parsed are skipped.

Set the log level with DETECT_LANGUAGE_LOG_LEVEL, e.g. DEBUG.
All logging goes to stderr.
"""


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser; exactly one input source is required."""
    parser = argparse.ArgumentParser(
        prog="detect-language",
        description="Detect the language of a text using the Lingua language detector.",
        epilog=OUTPUT_HELP,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-j", "--json",
        action="store_true",
        help="Process input as a JSON array of strings.",
    )
    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    source = parser.add_argument_group("input (exactly one required)")
    source.add_argument(
        "text",
        nargs="?",
        default=None,
        help="The text that you want to detect the language of.",
    )
    source.add_argument(
        "-s", "--stdin",
        action="store_true",
        help="Get input from stdin.",
    )
    source.add_argument(
        "-f", "--file",
        action="append",
        type=Path,
        default=[],
        metavar="PATH",
        help="Get input from a file. Repeat to process several files.",
    )
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments and reject ambiguous or missing input sources."""
    parser = build_parser()
    args = parser.parse_args(argv)

    chosen = [
        name
        for name, active in (
            ("TEXT", args.text is not None),
            ("--stdin", args.stdin),
            ("--file", bool(args.file)),
        )
        if active
    ]
    if not chosen:
        parser.error("one of TEXT, --stdin or --file is required")
    if len(chosen) > 1:
        parser.error(f"only one input source may be given, got {', '.join(chosen)}")
    return args


def configure_logging(settings: DetectorSettings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


def run(args: argparse.Namespace) -> Union[DetectionOutcome, list]:
    """Dispatch to the processing function for the selected input source."""
    fmt = "JSON" if args.json else "plain text"

    if args.stdin:
        logger.debug("Processing stdin as %s", fmt)
        return process_stdin(args.json)
    if args.file:
        logger.debug("Processing files %s as %s", [str(p) for p in args.file], fmt)
        return process_files(args.file, args.json)

    logger.debug("Processing argument '%s' as %s", args.text, fmt)
    return process_string(args.text, args.json)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        settings = DetectorSettings.from_env()
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return EXIT_FAILURE
    configure_logging(settings)

    try:
        result = run(args)
    except LanguageCliError as exc:
        logger.error("%s", exc)
        return EXIT_FAILURE

    logger.debug("Finished processing, printing results")
    sys.stdout.write(render_json(result) + "\n")
    return EXIT_SUCCESS


if __name__ == "__main__":
    sys.exit(main())
