"""
Pytest configuration and fixtures for the multi-omics pipeline tests.
"""

from unittest.mock import MagicMock
import pytest
import pandas as pd
import numpy as np


# ============================================================================
# Streamlit Mocking Fixtures
# ============================================================================


@pytest.fixture
def mock_streamlit(monkeypatch):
    """Mock Streamlit inside report_app to prevent UI rendering during tests."""
    mock_st = MagicMock()

    mock_st.button = MagicMock(return_value=False)
    mock_st.checkbox = MagicMock(return_value=False)
    mock_st.selectbox = MagicMock(return_value=None)
    mock_st.text_input = MagicMock(return_value="")
    mock_st.columns = MagicMock(side_effect=lambda n: [MagicMock() for _ in range(n if isinstance(n, int) else len(n))])
    mock_st.tabs = MagicMock(side_effect=lambda labels: [MagicMock() for _ in labels])
    mock_st.sidebar = MagicMock()
    mock_st.spinner = MagicMock()
    mock_st.session_state = {}

    monkeypatch.setattr("report_app.st", mock_st)
    return mock_st


# ============================================================================
# Sample Data Fixtures
# ============================================================================

SAMPLES = [f"SEQ{i:02d}" for i in range(1, 7)]


@pytest.fixture
def sample_design_df():
    """3 control + 3 treatment samples."""
    return pd.DataFrame(
        {
            "sequence_id": SAMPLES,
            "channel": [f"ch{i}" for i in range(1, 7)],
            "purpose": ["control"] * 3 + ["treatment"] * 3,
        }
    )


@pytest.fixture
def sample_long_counts():
    """
    Long-format counts: 30 coding genes (ids carry the "gene-" prefix),
    two low-count genes and two non-coding features, for all 6 samples.
    """
    np.random.seed(42)
    rows = []
    for g in range(30):
        for sample in SAMPLES:
            rows.append((sample, f"gene-SGL_RS{g:05d}", int(np.random.negative_binomial(20, 0.1))))
    for sample in SAMPLES:
        rows.append((sample, "gene-SGL_RS90000", 3))  # never above threshold
        rows.append((sample, "gene-SGL_RS90001", 24))  # equal to threshold everywhere
        rows.append((sample, "__no_feature", 500))
        rows.append((sample, "rRNA-16S", 1500))
    return pd.DataFrame(rows, columns=["sequence_id", "gene", "counts"])


@pytest.fixture
def sample_counts_matrix():
    """Samples × genes count matrix with every gene expressed."""
    np.random.seed(7)
    data = np.random.negative_binomial(n=10, p=0.1, size=(6, 40)) + 1
    genes = [f"SGL_RS{i:05d}" for i in range(40)]
    return pd.DataFrame(data, index=SAMPLES, columns=genes)


@pytest.fixture
def sample_gene_id_map():
    """ncbi_id → locus name cross-reference; the last two genes lack a kegg_id."""
    ncbi = [f"SGL_RS{i:05d}" for i in range(30)]
    locus = [f"slr{i:04d}" for i in range(30)]
    kegg = [f"syn:{name}" for name in locus]
    kegg[28] = None
    kegg[29] = None
    return pd.DataFrame({"ncbi_id": ncbi, "gene_name": locus, "kegg_id": kegg})


@pytest.fixture
def sample_de_results_df():
    """
    DE results in the engine's output layout. Genes 0-4 are up, 5-9 down,
    the rest not significant.
    """
    np.random.seed(42)
    n_genes = 30
    df = pd.DataFrame(
        {
            "gene": [f"SGL_RS{i:05d}" for i in range(n_genes)],
            "baseMean": np.random.uniform(50, 1000, n_genes),
            "log2FoldChange": np.random.uniform(-0.5, 0.5, n_genes),
            "lfcSE": np.random.uniform(0.2, 0.5, n_genes),
            "stat": np.random.normal(0, 1, n_genes),
            "pvalue": np.random.uniform(0.3, 1.0, n_genes),
            "padj": np.random.uniform(0.5, 1.0, n_genes),
        }
    )
    df.loc[0:4, "log2FoldChange"] = [3.0, 2.5, 2.2, 1.8, 1.5]
    df.loc[0:4, "pvalue"] = [1e-6, 1e-5, 1e-4, 1e-3, 0.01]
    df.loc[5:9, "log2FoldChange"] = [-3.0, -2.5, -2.2, -1.8, -1.5]
    df.loc[5:9, "pvalue"] = [2e-6, 2e-5, 2e-4, 2e-3, 0.02]
    df["qvalue"] = np.nan
    return df


@pytest.fixture
def sample_proteomics_df():
    """Proteomics rows; one gene absent from DE results and one row without a locus tag."""
    return pd.DataFrame(
        {
            "description": [
                "photosystem II protein D1 [locus_tag=SGL_RS00000] [protein=PsbA]",
                "hypothetical protein [locus_tag=SGL_RS00005] [protein=Hyp1]",
                "hypothetical protein [locus_tag=SGL_RS00012] [protein=Hyp2]",
                "unknown protein [locus_tag=SGL_RS99999] [protein=Unk]",
                "keratin contaminant",
            ],
            "protein": ["PsbA", "Hyp1", "Hyp2", "Unk", "KRT1"],
            "avg_ratio": [4.0, 0.25, 1.1, 2.0, 1.0],
            "ratio_count": pd.array([5, 3, 2, 1, 1], dtype="Int64"),
        }
    )


@pytest.fixture
def sample_go_terms_df():
    """GO annotation with one locus missing from the cross-reference."""
    rows = []
    for g in range(0, 12):
        rows.append(("Synechocystis sp. PCC 6803", "photosynthesis (GO:0015979)", f"slr{g:04d}"))
    for g in range(10, 20):
        rows.append(("Synechocystis sp. PCC 6803", "translation (GO:0006412)", f"slr{g:04d}"))
    rows.append(("Synechocystis sp. PCC 6803", "translation (GO:0006412)", "sll9999"))
    rows.append(("Synechocystis sp. PCC 6803", "orphan term (GO:0000001)", "sll9998"))
    rows.append(("Nostoc sp.", "nitrogen fixation (GO:0009399)", "all0001"))
    return pd.DataFrame(rows, columns=["organism", "go_term", "gene_id"])


@pytest.fixture
def sample_input_files(
    tmp_path, sample_design_df, sample_long_counts, sample_gene_id_map,
    sample_proteomics_df, sample_go_terms_df,
):
    """The sample tables written as TSV files; returns {name: path}."""
    paths = {
        "design": tmp_path / "design.tsv",
        "counts": tmp_path / "counts.tsv",
        "gene_id_map": tmp_path / "gene_id_matching.tsv",
        "proteomics": tmp_path / "proteomics.tsv",
        "go_terms": tmp_path / "go_terms.tsv",
    }
    sample_design_df.to_csv(paths["design"], sep="\t", index=False)
    sample_long_counts.to_csv(paths["counts"], sep="\t", index=False)
    sample_gene_id_map.to_csv(paths["gene_id_map"], sep="\t", index=False)
    sample_proteomics_df.to_csv(paths["proteomics"], sep="\t", index=False)
    sample_go_terms_df.to_csv(paths["go_terms"], sep="\t", index=False)
    return paths


# ============================================================================
# External API Mocking Fixtures
# ============================================================================


def _fake_prerank(**kwargs):
    """Build a GSEApy-like prerank result from the gene sets actually passed."""
    gene_sets = kwargs["gene_sets"]
    terms = sorted(gene_sets)
    n = len(terms)
    result = MagicMock()
    result.res2d = pd.DataFrame(
        {
            "Name": ["prerank"] * n,
            "Term": terms,
            "ES": [0.6 - 0.1 * i for i in range(n)],
            "NES": [1.8 - 0.3 * i for i in range(n)],
            "NOM p-val": [min(0.001 * (10 ** i), 1.0) for i in range(n)],
            "FDR q-val": [0.01] * n,
            "FWER p-val": [0.01] * n,
            "Lead_genes": [";".join(sorted(gene_sets[t])[:2]) for t in terms],
        }
    )
    result.results = {t: {"RES": [0.1, 0.4, 0.2, -0.1]} for t in terms}
    return result


@pytest.fixture
def mock_gseapy(monkeypatch):
    """Mock gseapy inside pathway_enrichment for enrichment testing."""
    mock_gp = MagicMock()
    mock_gp.prerank = MagicMock(side_effect=_fake_prerank)
    monkeypatch.setattr("pathway_enrichment.gp", mock_gp)
    return mock_gp


KEGG_LINK_TEXT = "\n".join(
    [f"syn:slr{g:04d}\tpath:syn00195" for g in range(0, 12)]
    + [f"syn:slr{g:04d}\tpath:syn03010" for g in range(10, 20)]
    + ["syn:sll9999\tpath:syn09999"]
)
KEGG_LIST_TEXT = (
    "syn00195\tPhotosynthesis - Synechocystis sp. PCC 6803\n"
    "syn03010\tRibosome - Synechocystis sp. PCC 6803\n"
    "syn09999\tOrphan pathway - Synechocystis sp. PCC 6803\n"
)


@pytest.fixture
def mock_kegg_session():
    """requests.Session stand-in answering KEGG REST link/list calls."""

    def get(url, timeout=None):
        response = MagicMock()
        response.raise_for_status = MagicMock()
        if "/link/pathway/" in url:
            response.text = KEGG_LINK_TEXT
        elif "/list/pathway/" in url:
            response.text = KEGG_LIST_TEXT
        else:
            response.text = ""
        return response

    session = MagicMock()
    session.get = MagicMock(side_effect=get)
    return session


# ============================================================================
# Demo Dataset Fixture
# ============================================================================


@pytest.fixture
def demo_config_path(tmp_path):
    """Synthetic demo dataset written to a temporary directory."""
    from demo_data import write_demo_dataset

    return write_demo_dataset(tmp_path / "demo")
