"""End-to-end tests for the pipeline orchestrator and CLI."""

from unittest.mock import MagicMock
import pandas as pd
import pytest
import requests

from config import AnalysisConfig, load_config
from demo_data import N_GENES, N_LOW_COUNT, UP_GENES, ncbi_id
from de_analysis import DEResult
from errors import ExclusionReport, SchemaValidationError
from gene_sets import GeneSetUniverse, KeggClient
from identifiers import IdentifierMap
from omics_loader import load_all
from pipeline import AnalysisRun, CyanoOmicsPipeline, build_parser, main


@pytest.fixture
def demo_run(mock_gseapy, demo_config_path):
    pipeline = CyanoOmicsPipeline(load_config(str(demo_config_path)))
    return pipeline, pipeline.run()


@pytest.fixture
def sample_config(sample_input_files, tmp_path):
    return AnalysisConfig(
        counts_path=sample_input_files["counts"],
        design_path=sample_input_files["design"],
        gene_id_map_path=sample_input_files["gene_id_map"],
        proteomics_path=sample_input_files["proteomics"],
        go_terms_path=sample_input_files["go_terms"],
        output_dir=tmp_path / "results",
        min_set_size=5,
    )


class TestDemoRun:
    def test_low_count_genes_dropped(self, demo_run):
        _, run = demo_run
        low = {ncbi_id(g) for g in range(N_GENES - N_LOW_COUNT, N_GENES)}
        assert low <= set(run.filtered.dropped_genes)
        assert not low & set(run.filtered.counts.columns)
        assert len(run.filtered.noncoding) > 0

    def test_built_in_signal_recovered(self, demo_run):
        _, run = demo_run
        up = set(run.de_filtered.upregulated()["gene"])
        assert len(up & {ncbi_id(g) for g in UP_GENES}) >= 15

    def test_both_normalizations(self, demo_run):
        _, run = demo_run
        assert set(run.normalization) == {"library", "median_ratio"}

    def test_enrichment_runs(self, demo_run):
        _, run = demo_run
        labels = {r.label for r in run.enrichment_runs}
        assert labels == {"KEGG_all", "KEGG_significant", "GO_all", "GO_significant"}
        assert all(r.error is None for r in run.enrichment_runs)

    def test_proteomics_integration(self, demo_run):
        _, run = demo_run
        integration = run.integration
        assert len(integration.standalone) == 113
        assert len(integration.integrated) <= 100
        assert integration.n_unmatched >= 13

    def test_exclusions_recorded(self, demo_run):
        _, run = demo_run
        assert run.report.count(kind="unmapped_identifier") > 0
        assert run.report.count(stage="proteomics_description") == 3

    def test_figures(self, demo_run):
        pipeline, run = demo_run
        figures = pipeline.build_figures(run)
        for key in ("pca", "volcano", "ma", "loadings_PC1", "proteomics_correlation", "enrichment_KEGG_all"):
            assert key in figures

    def test_save_results(self, demo_run, tmp_path):
        pipeline, run = demo_run
        out = pipeline.save_results(run, tmp_path / "out", figures=False)
        assert (out / "de_results.tsv").exists()
        assert (out / "upregulated.tsv").exists()
        assert (out / "analysis_results.xlsx").exists()
        assert not (out / "figures").exists()


class TestGeneSetUniverses:
    def test_kegg_failure_recorded_not_raised(self, sample_config):
        session = MagicMock()
        session.get.side_effect = requests.exceptions.ConnectionError("no network")
        pipeline = CyanoOmicsPipeline(sample_config, kegg_client=KeggClient(session=session))
        tables = load_all(sample_config)
        universes, failed = pipeline.gene_set_universes(
            tables, IdentifierMap(tables.gene_id_map, organism="syn"), ExclusionReport()
        )
        assert [u.name for u in universes] == ["GO"]
        assert [r.label for r in failed] == ["KEGG_all", "KEGG_significant"]
        assert all("no network" in r.error for r in failed)

    def test_live_kegg_translated_to_count_ids(self, sample_config, mock_kegg_session):
        pipeline = CyanoOmicsPipeline(sample_config, kegg_client=KeggClient(session=mock_kegg_session))
        tables = load_all(sample_config)
        report = ExclusionReport()
        universes, failed = pipeline.gene_set_universes(
            tables, IdentifierMap(tables.gene_id_map, organism="syn"), report
        )
        kegg = universes[0]
        assert failed == []
        assert "SGL_RS00000" in kegg.gene_sets["syn00195"]
        assert "syn09999" not in kegg.gene_sets
        assert report.count(kind="empty_gene_set") >= 1

    def test_go_namespace_from_config(self, sample_config):
        config = sample_config.with_overrides(kegg_organism=None, go_id_namespace="gene_name")
        pipeline = CyanoOmicsPipeline(config)
        tables = load_all(config)
        universes, failed = pipeline.gene_set_universes(
            tables, IdentifierMap(tables.gene_id_map, organism="syn"), ExclusionReport()
        )
        assert failed == []
        assert [u.name for u in universes] == ["GO"]
        photosynthesis = universes[0].gene_sets["GO:0015979"]
        assert len(photosynthesis) == 12
        assert "SGL_RS00000" in photosynthesis


class TestEnrichmentRankings:
    def test_zero_pvalue_gene_in_significant_ranking(
        self, sample_config, sample_de_results_df, mock_gseapy, monkeypatch
    ):
        de = sample_de_results_df.copy()
        de.loc[0, "pvalue"] = 0.0
        de_result = DEResult(
            results_df=de,
            normalized_counts=pd.DataFrame(),
            size_factors=pd.Series(dtype=float),
            comparison=("treatment", "control"),
        )
        run = AnalysisRun(
            config=sample_config,
            tables=MagicMock(),
            filtered=MagicMock(),
            design=MagicMock(),
            normalization={},
            projection=MagicMock(),
            outliers=[],
            de_result=de_result,
            de_filtered=de_result.without_undefined_pvalues(),
        )
        assert "SGL_RS00000" not in run.significant_genes()
        assert "SGL_RS00000" in run.significant_genes(run.de_result)

        universe = GeneSetUniverse(
            name="KEGG", gene_sets={"syn00195": {f"SGL_RS{i:05d}" for i in range(10)}}
        )
        pipeline = CyanoOmicsPipeline(sample_config)
        monkeypatch.setattr(pipeline, "gene_set_universes", lambda *args: ([universe], []))
        runs = {r.gene_list: r for r in pipeline.run_enrichment(run, MagicMock())}
        assert runs["all"].n_ranked == 30
        assert runs["significant"].n_ranked == 10


def test_invalid_qc_normalization(sample_config):
    config = sample_config.with_overrides(qc_normalization="tmm")
    with pytest.raises(SchemaValidationError, match="qc_normalization"):
        CyanoOmicsPipeline(config).run()


def test_invalid_go_namespace(sample_config):
    config = sample_config.with_overrides(go_id_namespace="uniprot")
    with pytest.raises(SchemaValidationError, match="go_id_namespace"):
        CyanoOmicsPipeline(config).run()


class TestCli:
    def test_parser_defaults(self):
        args = build_parser().parse_args([])
        assert args.config is None
        assert args.log_level == "INFO"
        assert not args.demo

    def test_demo_end_to_end(self, mock_gseapy, tmp_path):
        out = tmp_path / "out"
        assert main(["--demo", "--output-dir", str(out), "--no-figures"]) == 0
        assert (out / "demo_data" / "demo_config.yaml").exists()
        assert (out / "de_results.tsv").exists()
        assert (out / "exclusions.tsv").exists()

    def test_schema_error_exits_nonzero_without_output(self, sample_input_files, tmp_path):
        config = tmp_path / "broken.yaml"
        config.write_text(
            f"counts_path: {tmp_path / 'missing_counts.tsv'}\n"
            f"design_path: {sample_input_files['design']}\n"
            f"gene_id_map_path: {sample_input_files['gene_id_map']}\n"
            f"output_dir: {tmp_path / 'never'}\n"
        )
        assert main(["--config", str(config)]) == 1
        assert not (tmp_path / "never").exists()

    def test_empty_design_exits_nonzero(self, sample_input_files, tmp_path):
        empty = tmp_path / "empty_design.tsv"
        empty.write_text("")
        config = tmp_path / "empty.yaml"
        config.write_text(
            f"counts_path: {sample_input_files['counts']}\n"
            f"design_path: {empty}\n"
            f"gene_id_map_path: {sample_input_files['gene_id_map']}\n"
            f"output_dir: {tmp_path / 'never'}\n"
        )
        assert main(["--config", str(config)]) == 1
        assert not (tmp_path / "never").exists()
