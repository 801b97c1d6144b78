"""
Gene identifier translation between namespaces.

Counts use NCBI locus accessions (ncbi_id, e.g. SGL_RS01875), KEGG and the
GO annotation use the organism's ordered locus names (e.g. slr0001), and the
proteomics table embeds an identifier inside a free-text description.
Every translation is a pure function returning None when no id can be found,
so callers can count misses instead of silently dropping rows.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional
import re
import pandas as pd

NAMESPACES = ("ncbi_id", "gene_name", "kegg_id")

LOCUS_TAG_PATTERN = r"\[locus_tag=([^\]]+)\]"


def _is_missing(value) -> bool:
    if value is None:
        return True
    try:
        if pd.isna(value):
            return True
    except (TypeError, ValueError):
        return False
    return str(value).strip() == ""


def strip_accession_prefix(gene_id, prefix: str = "gene-") -> Optional[str]:
    """
    Remove an accession prefix such as "gene-" from a feature id.

    Ids without the prefix are returned unchanged; blank ids give None.

    >>> strip_accession_prefix("gene-SGL_RS01875")
    'SGL_RS01875'
    """
    if _is_missing(gene_id):
        return None
    text = str(gene_id).strip()
    if prefix and text.startswith(prefix):
        text = text[len(prefix):]
    return text or None


def strip_organism_prefix(kegg_gene, organism: Optional[str] = None) -> Optional[str]:
    """
    Turn a KEGG gene id like "syn:slr0001" into "slr0001".

    When organism is given, only that organism's prefix is removed.
    """
    if _is_missing(kegg_gene):
        return None
    text = str(kegg_gene).strip()
    if ":" in text:
        org, _, local = text.partition(":")
        if organism is None or org == organism:
            text = local
    return text or None


def extract_embedded_id(description, pattern: str = LOCUS_TAG_PATTERN) -> Optional[str]:
    """
    Pull a gene id out of a free-text description field.

    The first capture group of pattern is returned.

    >>> extract_embedded_id("DNA polymerase III [locus_tag=SGL_RS01875] [protein=DnaN]")
    'SGL_RS01875'
    """
    if _is_missing(description):
        return None
    match = re.search(pattern, str(description))
    if match is None:
        return None
    found = match.group(1).strip()
    return found or None


def parse_go_term(go_term) -> Optional[tuple]:
    """
    Split "<description> (GO:<id>)" into (GO id, description).

    >>> parse_go_term("photosynthesis (GO:0015979)")
    ('GO:0015979', 'photosynthesis')
    """
    if _is_missing(go_term):
        return None
    match = re.match(r"^(.*?)\s*\((GO:\d+)\)\s*$", str(go_term).strip())
    if match is None:
        return None
    return match.group(2), match.group(1).strip()


@dataclass
class TranslationResult:
    """Outcome of translating a batch of ids."""

    mapped: Dict[str, str] = field(default_factory=dict)
    unmapped: List[str] = field(default_factory=list)

    @property
    def n_unmapped(self) -> int:
        return len(self.unmapped)


def translate_ids(ids: Iterable[str], mapping: Mapping[str, str]) -> TranslationResult:
    """Translate ids through mapping, collecting those without an entry."""
    result = TranslationResult()
    for gene_id in ids:
        target = mapping.get(gene_id)
        if _is_missing(target):
            result.unmapped.append(gene_id)
        else:
            result.mapped[gene_id] = target
    return result


class IdentifierMap:
    """
    Lookup tables built from the gene-id matching table.

    kegg_id values are stored without an organism prefix so they compare
    equal to ids from the KEGG REST API after strip_organism_prefix.
    """

    def __init__(self, gene_id_map: pd.DataFrame, organism: Optional[str] = None):
        table = gene_id_map.copy()
        table["kegg_id"] = [strip_organism_prefix(k, organism) for k in table["kegg_id"]]
        self.table = table
        self._lookups: Dict[tuple, Dict[str, str]] = {}

    def mapping(self, source: str, target: str) -> Dict[str, str]:
        """Dictionary from one namespace to another (first occurrence wins)."""
        if source not in NAMESPACES or target not in NAMESPACES:
            raise ValueError(f"Namespaces must be in {NAMESPACES}, got {source}->{target}")
        key = (source, target)
        if key not in self._lookups:
            pairs = self.table[[source, target]].dropna()
            pairs = pairs.drop_duplicates(subset=[source], keep="first")
            self._lookups[key] = dict(zip(pairs[source], pairs[target]))
        return self._lookups[key]

    def translate(self, ids: Iterable[str], source: str, target: str) -> TranslationResult:
        if source == target:
            return TranslationResult(mapped={i: i for i in ids})
        return translate_ids(ids, self.mapping(source, target))
