"""
Gene-set universes for enrichment testing.

- KEGG pathways for an organism code, fetched from the KEGG REST API or read
  from a cached table (pathID, pathName, gene_id)
- GO terms built by grouping the GO annotation table by term

Member ids are translated into the namespace of the ranked gene list; genes
without a translation and sets left empty are recorded on the exclusion
report rather than dropped silently.
"""

from dataclasses import dataclass, field
from os import PathLike
from typing import Dict, Optional, Set, Union
import logging
import re
import pandas as pd
import requests

from errors import EmptyGeneSet, ExclusionReport, SchemaValidationError, UnmappedIdentifier
from identifiers import IdentifierMap, parse_go_term, strip_organism_prefix
from omics_loader import load_table

logger = logging.getLogger(__name__)

KEGG_SET_COLUMNS = ["pathID", "pathName", "gene_id"]


@dataclass
class GeneSetUniverse:
    """Named collection of gene sets with human-readable descriptions."""

    name: str
    gene_sets: Dict[str, Set[str]]
    descriptions: Dict[str, str] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.gene_sets)

    def to_frame(self) -> pd.DataFrame:
        """Long table: pathID, pathName, gene_id."""
        rows = [
            (set_id, self.descriptions.get(set_id, ""), gene)
            for set_id, genes in self.gene_sets.items()
            for gene in sorted(genes)
        ]
        return pd.DataFrame(rows, columns=KEGG_SET_COLUMNS)


class KeggRequestError(Exception):
    """KEGG REST call failed."""


class KeggClient:
    """
    Minimal client for the KEGG REST API.

    Usage:
        client = KeggClient()
        universe = client.pathway_gene_sets("syn")
    """

    BASE_URL = "https://rest.kegg.jp"

    def __init__(self, timeout: int = 30, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get(self, path: str) -> str:
        url = f"{self.BASE_URL}/{path}"
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise KeggRequestError(f"KEGG request failed for {url}: {e}") from e
        return response.text

    @staticmethod
    def _tab_lines(text: str):
        for line in text.splitlines():
            if "\t" in line:
                yield line.split("\t", 1)

    def pathway_names(self, organism: str) -> Dict[str, str]:
        """pathID -> name with the trailing " - <organism name>" removed."""
        names = {}
        for path_id, name in self._tab_lines(self._get(f"list/pathway/{organism}")):
            path_id = path_id.strip().replace("path:", "")
            names[path_id] = re.sub(r"\s+-\s+[^-]+$", "", name.strip())
        return names

    def pathway_links(self, organism: str) -> Dict[str, Set[str]]:
        """pathID -> set of KEGG gene ids without the organism prefix."""
        links: Dict[str, Set[str]] = {}
        for gene, path_id in self._tab_lines(self._get(f"link/pathway/{organism}")):
            path_id = path_id.strip().replace("path:", "")
            gene_id = strip_organism_prefix(gene, organism)
            if gene_id:
                links.setdefault(path_id, set()).add(gene_id)
        return links

    def pathway_gene_sets(self, organism: str) -> GeneSetUniverse:
        links = self.pathway_links(organism)
        names = self.pathway_names(organism)
        logger.info(f"Fetched {len(links)} KEGG pathways for '{organism}'")
        return GeneSetUniverse(name="KEGG", gene_sets=links, descriptions=names)


def load_kegg_gene_sets(path: Union[str, PathLike]) -> GeneSetUniverse:
    """Read cached KEGG sets from a pathID / pathName / gene_id table."""
    df = load_table(path, KEGG_SET_COLUMNS, dtypes={c: str for c in KEGG_SET_COLUMNS})
    df = df.dropna(subset=["pathID", "gene_id"])
    gene_sets = {pid: set(group["gene_id"]) for pid, group in df.groupby("pathID")}
    descriptions = (
        df.drop_duplicates("pathID").set_index("pathID")["pathName"].fillna("").to_dict()
    )
    return GeneSetUniverse(name="KEGG", gene_sets=gene_sets, descriptions=descriptions)


def translate_universe(
    universe: GeneSetUniverse,
    id_map: IdentifierMap,
    source: str,
    target: str,
    report: Optional[ExclusionReport] = None,
) -> GeneSetUniverse:
    """
    Move every set's members from one namespace to another.

    Unmapped members are recorded once per universe; sets left with no
    members are recorded as EmptyGeneSet and removed.
    """
    if source == target:
        return universe
    members = sorted({g for genes in universe.gene_sets.values() for g in genes})
    translation = id_map.translate(members, source, target)

    translated: Dict[str, Set[str]] = {}
    empty = []
    for set_id, genes in universe.gene_sets.items():
        mapped = {translation.mapped[g] for g in genes if g in translation.mapped}
        if mapped:
            translated[set_id] = mapped
        else:
            empty.append(set_id)

    if report is not None:
        report.record(UnmappedIdentifier(f"{universe.name.lower()}_{source}_to_{target}", translation.unmapped))
        report.record(EmptyGeneSet(universe.name.lower(), empty))
    if translation.n_unmapped:
        logger.warning(
            f"{universe.name}: {translation.n_unmapped} of {len(members)} member genes "
            f"have no {target}; {len(empty)} set(s) became empty"
        )
    return GeneSetUniverse(
        name=universe.name,
        gene_sets=translated,
        descriptions={k: v for k, v in universe.descriptions.items() if k in translated},
    )


def build_go_gene_sets(
    go_terms: pd.DataFrame,
    id_map: Optional[IdentifierMap] = None,
    source: str = "kegg_id",
    target: str = "ncbi_id",
    organism: Optional[str] = None,
    report: Optional[ExclusionReport] = None,
) -> GeneSetUniverse:
    """
    Group the GO annotation table into gene sets.

    Args:
        go_terms: organism, go_term ("<description> (GO:<id>)"), gene_id
        id_map: Translator into the ranked-list namespace; None keeps ids as-is
        source: Namespace of go_terms.gene_id
        target: Namespace of the ranked gene list
        organism: Keep only rows of this organism when given
        report: Exclusion report for unmapped genes and empty sets

    Returns:
        GeneSetUniverse named "GO"
    """
    table = go_terms
    if organism is not None:
        table = table[table["organism"] == organism]
        if table.empty:
            raise SchemaValidationError(
                f"GO table has no rows for organism '{organism}'",
                {"organisms": sorted(go_terms["organism"].dropna().unique().tolist())},
            )

    parsed = [parse_go_term(t) for t in table["go_term"]]
    unparsed = [t for t, p in zip(table["go_term"], parsed) if p is None]
    if unparsed:
        logger.warning(f"{len(unparsed)} GO annotation row(s) have an unreadable go_term")
        if report is not None:
            report.record(UnmappedIdentifier("go_term_parse", unparsed))

    gene_sets: Dict[str, Set[str]] = {}
    descriptions: Dict[str, str] = {}
    for term, gene_id in zip(parsed, table["gene_id"]):
        if term is None or pd.isna(gene_id):
            continue
        go_id, description = term
        gene_sets.setdefault(go_id, set()).add(str(gene_id).strip())
        descriptions.setdefault(go_id, description)

    universe = GeneSetUniverse(name="GO", gene_sets=gene_sets, descriptions=descriptions)
    logger.info(f"Built {len(universe)} GO gene sets")
    if id_map is None:
        return universe
    return translate_universe(universe, id_map, source, target, report)
