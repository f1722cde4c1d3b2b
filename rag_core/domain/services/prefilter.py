"""Cheap lexical prefilter for the rerank cascade.

Why: Pure, deterministic term-overlap scoring decides which candidates are
worth a cross-encoder call. No I/O, no external libraries.

Functions:
- tokenize: casefolded whitespace tokens with punctuation stripped
- prefilter_scores: IDF-weighted query-term coverage per candidate, in [0, 1]
"""

from __future__ import annotations

import math
import string
from collections.abc import Sequence

_STRIP = string.punctuation + "।॥“”‘’"


def tokenize(text: str) -> list[str]:
    """Split on whitespace, strip punctuation, drop single-character noise.

    Whitespace splitting (rather than ``\\w+``) keeps Devanagari words with
    combining vowel signs intact.

    Examples:
        >>> tokenize("Gold-loan rates, today!")
        ['gold-loan', 'rates', 'today']
    """
    tokens: list[str] = []
    for raw in (text or "").casefold().split():
        tok = raw.strip(_STRIP)
        if len(tok) > 1 or tok.isdigit():
            tokens.append(tok)
    return tokens


def prefilter_scores(query: str, documents: Sequence[str]) -> list[float]:
    """Score each document by the IDF-weighted share of query terms it contains.

    IDF is computed over ``documents`` (the candidate pool) with smoothing,
    ``idf(t) = ln((N + 1) / (df(t) + 1)) + 1``, so rare query terms count more
    than terms every candidate shares.

    Args:
        query: Query text
        documents: Candidate texts, in any order

    Returns:
        One score in [0, 1] per document. A query without usable terms scores
        every document 1.0 (nothing to filter on). Empty input returns [].
    """
    if not documents:
        return []
    q_terms = set(tokenize(query))
    if not q_terms:
        return [1.0] * len(documents)

    doc_terms = [set(tokenize(d)) for d in documents]
    n = len(documents)
    idf: dict[str, float] = {}
    for t in q_terms:
        df = sum(1 for terms in doc_terms if t in terms)
        idf[t] = math.log((n + 1) / (df + 1)) + 1.0

    total = sum(idf.values())
    return [sum(idf[t] for t in q_terms if t in terms) / total for terms in doc_terms]
