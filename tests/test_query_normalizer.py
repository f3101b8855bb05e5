"""Tests for query normalization."""

from service_search.app.intelligence.query_normalizer import (
    EMPTY_VARIANTS,
    condense,
    expand_tokens,
    normalize,
)


def test_normalize_basic_forms():
    variants = normalize("  Machine   Learning  Basics ")
    assert variants.trimmed == "Machine   Learning  Basics"
    assert variants.collapsed == "Machine Learning Basics"
    assert variants.lower_trimmed == "machine   learning  basics"
    assert variants.tokens == ("Machine", "Learning", "Basics")
    assert variants.lower_tokens == ("machine", "learning", "basics")
    assert variants.normalized == "machine learning basics"
    assert variants.embedding_text == "machine learning basics"
    assert variants.condensed_normalized == "machinelearningbasics"
    assert not variants.is_empty


def test_blank_queries_are_empty():
    assert normalize("") == EMPTY_VARIANTS
    assert normalize("   \t\n").is_empty
    assert normalize(None).is_empty


def test_punctuation_and_symbols_become_spaces():
    variants = normalize("C++ & Rust—fast “quoted”")
    assert variants.tokens == ("C", "Rust", "fast", "quoted")


def test_technical_suffix_expansion():
    assert expand_tokens(["nodejs"]) == ["nodejs", "node", "js"]
    assert expand_tokens(["postgresql"]) == ["postgresql", "postgre", "sql"]
    assert expand_tokens(["aspnet"]) == ["aspnet", "asp", "net"]
    # A bare suffix is not split further.
    assert expand_tokens(["js"]) == ["js"]


def test_letter_digit_expansion():
    assert expand_tokens(["python3"]) == ["python3", "python", "3"]
    assert expand_tokens(["2fa"]) == ["2fa", "2", "fa"]
    assert expand_tokens(["es2015"]) == ["es2015", "es", "2015"]


def test_expansion_deduplicates_in_order():
    assert expand_tokens(["node", "nodejs", "node"]) == ["node", "nodejs", "js"]


def test_condense_is_unicode_aware():
    assert condense("Héllo, Wörld!") == "héllowörld"


def test_node_js_variants_are_equivalent():
    spellings = ["Node.js tutorial", "node js tutorial", "NODEJS TUTORIAL"]
    variants = [normalize(s) for s in spellings]

    assert {v.condensed_trimmed for v in variants} == {"nodejstutorial"}
    for v in variants:
        assert {"node", "js", "tutorial"} <= set(v.lower_tokens)


def test_match_terms():
    variants = normalize("Node.js tutorial")
    assert variants.match_terms() == ["node.js tutorial", "node js tutorial", "node", "js", "tutorial"]
