"""Analysis chain for package identifiers.

Identifiers mix delimiters and camel case (``Newtonsoft.Json``,
``ShebangModule``, ``Foo.Bar-Baz``), so the id field gets two analyzers:

* ``package-id-analyzer`` splits on non-word characters, then on case changes
  and digit boundaries while keeping the original token, then lower-cases.
* ``package-id-keyword`` keeps the whole id as one lower-cased token, which the
  query side uses for high-precision exact matches.

The chain is plain data. `AnalysisDefinition.to_settings()` renders it for
Elasticsearch index settings and `build_whoosh_analyzer()` renders the same
chain with Whoosh components for the in-process backend.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from whoosh.analysis import (
    Analyzer,
    IDTokenizer,
    IntraWordFilter,
    LowercaseFilter,
    RegexTokenizer,
    StandardAnalyzer,
)

from pkgsearch.exceptions import ConfigError

ID_TOKENIZER = "package-id-tokenizer"
ID_WORD_FILTER = "package-id-words"
ID_ANALYZER = "package-id-analyzer"
ID_KEYWORD_ANALYZER = "package-id-keyword"

_BUILTIN_TOKENIZERS = {"keyword", "standard", "whitespace"}
_BUILTIN_FILTERS = {"lowercase"}


@dataclass(frozen=True, slots=True)
class TokenizerDefinition:
    name: str
    type: str
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class TokenFilterDefinition:
    name: str
    type: str
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class AnalyzerDefinition:
    name: str
    tokenizer: str
    filters: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class AnalysisDefinition:
    """Custom tokenizers, token filters and analyzers attached to an index."""

    tokenizers: Tuple[TokenizerDefinition, ...] = ()
    filters: Tuple[TokenFilterDefinition, ...] = ()
    analyzers: Tuple[AnalyzerDefinition, ...] = ()

    def tokenizer(self, name: str) -> Optional[TokenizerDefinition]:
        return next((t for t in self.tokenizers if t.name == name), None)

    def filter(self, name: str) -> Optional[TokenFilterDefinition]:
        return next((f for f in self.filters if f.name == name), None)

    def analyzer(self, name: str) -> Optional[AnalyzerDefinition]:
        return next((a for a in self.analyzers if a.name == name), None)

    def validate(self) -> None:
        """Check references and patterns; raise `ConfigError` on the first problem."""
        for tok in self.tokenizers:
            if tok.type == "pattern":
                try:
                    re.compile(str(tok.options.get("pattern", "")))
                except re.error as exc:
                    raise ConfigError(f"Tokenizer {tok.name!r} has an invalid pattern: {exc}") from exc
        for an in self.analyzers:
            if an.tokenizer not in _BUILTIN_TOKENIZERS and self.tokenizer(an.tokenizer) is None:
                raise ConfigError(f"Analyzer {an.name!r} references unknown tokenizer {an.tokenizer!r}")
            for f in an.filters:
                if f not in _BUILTIN_FILTERS and self.filter(f) is None:
                    raise ConfigError(f"Analyzer {an.name!r} references unknown filter {f!r}")

    def to_settings(self) -> Dict[str, Any]:
        """Render as the ``analysis`` block of Elasticsearch index settings."""
        self.validate()
        return {
            "tokenizer": {t.name: {"type": t.type, **t.options} for t in self.tokenizers},
            "filter": {f.name: {"type": f.type, **f.options} for f in self.filters},
            "analyzer": {
                a.name: {"type": "custom", "tokenizer": a.tokenizer, "filter": list(a.filters)}
                for a in self.analyzers
            },
        }


def package_analysis() -> AnalysisDefinition:
    """The analysis chain used by package index generations."""
    return AnalysisDefinition(
        tokenizers=(TokenizerDefinition(ID_TOKENIZER, "pattern", {"pattern": r"\W+"}),),
        filters=(
            TokenFilterDefinition(
                ID_WORD_FILTER,
                "word_delimiter",
                {
                    "split_on_case_change": True,
                    "split_on_numerics": True,
                    "preserve_original": True,
                    "generate_word_parts": True,
                    "generate_number_parts": True,
                },
            ),
        ),
        analyzers=(
            AnalyzerDefinition(ID_ANALYZER, ID_TOKENIZER, (ID_WORD_FILTER, "lowercase")),
            AnalyzerDefinition(ID_KEYWORD_ANALYZER, "keyword", ("lowercase",)),
        ),
    )


def _whoosh_tokenizer(definition: AnalysisDefinition, name: str):
    if name == "keyword":
        return IDTokenizer()
    if name == "whitespace":
        return RegexTokenizer(r"\S+")
    if name == "standard":
        return RegexTokenizer()
    tok = definition.tokenizer(name)
    if tok is None:
        raise ConfigError(f"Unknown tokenizer {name!r}")
    if tok.type == "pattern":
        # Elasticsearch pattern tokenizers split on the pattern
        return RegexTokenizer(str(tok.options.get("pattern", r"\W+")), gaps=True)
    raise ConfigError(f"Tokenizer type {tok.type!r} is not supported by the Whoosh backend")


def _whoosh_filter(definition: AnalysisDefinition, name: str):
    if name == "lowercase":
        return LowercaseFilter()
    flt = definition.filter(name)
    if flt is None:
        raise ConfigError(f"Unknown token filter {name!r}")
    if flt.type == "word_delimiter":
        opts = flt.options
        keep = bool(opts.get("preserve_original", False))
        return IntraWordFilter(
            splitwords=bool(opts.get("split_on_case_change", True)),
            splitnums=bool(opts.get("split_on_numerics", True)),
            mergewords=keep,
            mergenums=keep,
        )
    raise ConfigError(f"Token filter type {flt.type!r} is not supported by the Whoosh backend")


def build_whoosh_analyzer(definition: AnalysisDefinition, name: Optional[str]) -> Analyzer:
    """Render a named analyzer as a Whoosh analyzer chain.

    ``None`` and ``"standard"`` map to a stopword-free standard analyzer,
    which is what Elasticsearch uses for text fields without an analyzer.
    """
    if name is None or name == "standard":
        return StandardAnalyzer(stoplist=None)
    an = definition.analyzer(name)
    if an is None:
        raise ConfigError(f"Unknown analyzer {name!r}")
    chain = _whoosh_tokenizer(definition, an.tokenizer)
    for f in an.filters:
        chain = chain | _whoosh_filter(definition, f)
    return chain


def analyze(text: str, analyzer: str = ID_ANALYZER) -> List[str]:
    """Return the tokens the package analysis chain produces for `text`."""
    chain = build_whoosh_analyzer(package_analysis(), analyzer)
    return [t.text for t in chain(text)]
