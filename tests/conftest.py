"""
Pytest configuration and fixtures for microarray_toolkit tests
"""

import pytest
import pandas as pd
import numpy as np
import tempfile
import os
from microarray_toolkit.statistical_analysis import StatisticalConfig


SAMPLE_NAMES = [
    "low10-1",
    "low10-2",
    "high10-1",
    "high10-2",
    "low48-1",
    "low48-2",
    "high48-1",
    "high48-2",
]
ESTROGEN = ["absent", "absent", "present", "present", "absent", "absent", "present", "present"]
TIME_H = ["10", "10", "10", "10", "48", "48", "48", "48"]

# Planted genes
E10_GENE = "E10_up_at"
E48_GENE = "E48_down_at"
TIME_GENE = "Time_up_at"


@pytest.fixture
def sample_names():
    """Sample names in targets order"""
    return list(SAMPLE_NAMES)


@pytest.fixture
def targets():
    """Targets table for the 2x2 estrogen x time experiment (two arrays per group)"""
    return pd.DataFrame(
        {
            "FileName": [f"{name}.csv" for name in SAMPLE_NAMES],
            "estrogen": ESTROGEN,
            "time.h": TIME_H,
            "Sample": SAMPLE_NAMES,
        }
    )


@pytest.fixture
def expression_data():
    """Create log2 expression data (200 genes x 8 arrays) with planted effects"""
    np.random.seed(42)

    n_genes = 200
    genes = [f"{1000 + i}_at" for i in range(n_genes - 3)] + [E10_GENE, E48_GENE, TIME_GENE]

    baseline = np.random.normal(8, 1.5, n_genes)
    noise_sd = np.random.uniform(0.15, 0.3, n_genes)
    data_matrix = baseline[:, None] + np.random.normal(0, 1, (n_genes, 8)) * noise_sd[:, None]

    present10 = [2, 3]
    present48 = [6, 7]
    hour48 = [4, 5, 6, 7]

    data_matrix[genes.index(E10_GENE), present10] += 4.0
    data_matrix[genes.index(E48_GENE), present48] -= 3.0
    data_matrix[genes.index(TIME_GENE), hour48] += 3.0

    df = pd.DataFrame(data_matrix, index=genes, columns=SAMPLE_NAMES)
    df.index.name = "Gene"
    return df


@pytest.fixture
def probe_data():
    """Create raw probe intensities: 30 probesets x 8 probes, indexed by (probeset, probe)"""
    np.random.seed(7)

    n_probesets = 30
    n_probes = 8
    probesets = [f"{2000 + i}_at" for i in range(n_probesets)]
    index = pd.MultiIndex.from_product(
        [probesets, [str(p) for p in range(1, n_probes + 1)]], names=["probeset", "probe"]
    )

    # Probe affinities plus probeset level, exponential signal on top of normal background
    probeset_level = np.repeat(np.random.normal(8, 1.5, n_probesets), n_probes)
    probe_affinity = np.random.normal(0, 0.5, len(index))
    log_signal = probeset_level + probe_affinity
    signal = 2 ** (log_signal[:, None] + np.random.normal(0, 0.1, (len(index), 8)))
    background = np.random.normal(60, 8, (len(index), 8))

    # Array-specific scaling the normalization should remove
    scaling = np.array([1.0, 1.2, 0.9, 1.1, 1.3, 0.8, 1.0, 1.15])
    intensities = (signal + np.abs(background)) * scaling[None, :]

    # First probeset goes up 8-fold in the present10 arrays
    intensities[:n_probes, 2:4] *= 8

    return pd.DataFrame(intensities, index=index, columns=SAMPLE_NAMES)


@pytest.fixture
def intensity_files(probe_data, targets):
    """Write one probe intensity CSV per array; yields (data_dir, targets)"""
    temp_dir = tempfile.mkdtemp()

    for sample, file_name in zip(targets["Sample"], targets["FileName"]):
        array = probe_data[sample].reset_index()
        array.columns = ["probeset", "probe", "intensity"]
        array.to_csv(os.path.join(temp_dir, file_name), index=False)

    yield temp_dir, targets

    # Cleanup
    import shutil

    shutil.rmtree(temp_dir)


@pytest.fixture
def targets_file(targets, tmp_path):
    """Tab-delimited targets file as produced by the array facility"""
    path = tmp_path / "targets.txt"
    targets.drop(columns=["Sample"]).to_csv(path, sep="\t", index=False)
    return str(path)


@pytest.fixture
def statistical_config():
    """Default configuration for the estrogen experiment"""
    config = StatisticalConfig()
    config.factor_columns = ["estrogen", "time.h"]
    config.sample_column = "Sample"
    config.parameterization = "group_means"
    config.p_value_threshold = 0.05
    return config


@pytest.fixture
def group_design(targets):
    """Group-means design matrix"""
    from microarray_toolkit.design import model_matrix

    return model_matrix(targets, ["estrogen", "time.h"])


@pytest.fixture
def moderated_fit(expression_data, targets, statistical_config):
    """Contrast fit after empirical Bayes moderation"""
    from microarray_toolkit.statistical_analysis import build_design_and_contrasts
    from microarray_toolkit.linear_model import lm_fit, contrasts_fit
    from microarray_toolkit.empirical_bayes import ebayes

    design, contrasts = build_design_and_contrasts(targets, statistical_config)
    fit = lm_fit(expression_data, design)
    return ebayes(contrasts_fit(fit, contrasts))


@pytest.fixture
def analysis_results(expression_data, targets, statistical_config):
    """Output of the complete statistical pipeline"""
    from microarray_toolkit.statistical_analysis import run_comprehensive_statistical_analysis

    return run_comprehensive_statistical_analysis(expression_data, targets, statistical_config)
