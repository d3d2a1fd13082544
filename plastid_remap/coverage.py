"""Coverage profile of the cohort alignment and its zero-depth gaps.

The profile is a bedgraph (0-based, half-open) held in a pandas DataFrame
with the columns ``contig``, ``start``, ``end`` and ``depth``. After
`complete_profile` the intervals of every contig are sorted, contiguous and
span ``[0, contig_length)`` exactly, with equal-depth neighbours merged.
"""

import logging
from pathlib import Path
from typing import Dict, Tuple

import numpy as np
import pandas as pd

from plastid_remap.stats import CoverageSummary
from plastid_remap.tools import ToolRunner

BEDGRAPH_COLUMNS = ["contig", "start", "end", "depth"]


def empty_profile() -> pd.DataFrame:
    """A bedGraph frame with no rows and the integer column types."""
    return pd.DataFrame(
        {
            "contig": pd.Series(dtype=str),
            "start": pd.Series(dtype=np.int64),
            "end": pd.Series(dtype=np.int64),
            "depth": pd.Series(dtype=np.int64),
        }
    )


def read_bedgraph(path: Path) -> pd.DataFrame:
    """Load a tab-separated bedgraph (contig, start, end, depth)."""
    if path.stat().st_size == 0:
        return empty_profile()
    df = pd.read_csv(
        path,
        sep="\t",
        header=None,
        names=BEDGRAPH_COLUMNS,
        usecols=range(4),
        dtype={"contig": str, "start": np.int64, "end": np.int64, "depth": np.int64},
        comment="#",
    )
    return df


def merge_runs(df: pd.DataFrame) -> pd.DataFrame:
    """Collapse adjacent intervals of one contig that share the same depth."""
    if df.empty:
        return df.reset_index(drop=True)
    breaks = (
        (df["contig"] != df["contig"].shift())
        | (df["depth"] != df["depth"].shift())
        | (df["start"] != df["end"].shift())
    )
    run_id = breaks.cumsum()
    merged = df.groupby(run_id, sort=False).agg(
        contig=("contig", "first"),
        start=("start", "min"),
        end=("end", "max"),
        depth=("depth", "first"),
    )
    return merged.reset_index(drop=True)


def complete_profile(df: pd.DataFrame, contig_lengths: Dict[str, int]) -> pd.DataFrame:
    """Make the profile partition every contig exactly.

    Stretches the coverage tool did not report become depth 0, intervals are
    clipped to the contig length and contigs missing from the reference are
    dropped with a warning.
    """
    unknown = sorted(set(df["contig"]) - set(contig_lengths))
    if unknown:
        logging.warning("Ignoring coverage for contigs absent from the reference: %s", ", ".join(unknown))

    rows = []
    for contig, length in contig_lengths.items():
        intervals = df[df["contig"] == contig].sort_values("start", kind="stable")
        position = 0
        for start, end, depth in intervals[["start", "end", "depth"]].itertuples(index=False):
            start, end = max(int(start), position), min(int(end), length)
            if end <= start:
                continue
            if start > position:
                rows.append((contig, position, start, 0))
            rows.append((contig, start, end, int(depth)))
            position = end
        if position < length:
            rows.append((contig, position, length, 0))

    if not rows:
        return empty_profile()
    profile = pd.DataFrame(rows, columns=BEDGRAPH_COLUMNS)
    profile = profile.astype({"start": np.int64, "end": np.int64, "depth": np.int64})
    return merge_runs(profile)


def extract_gaps(profile: pd.DataFrame) -> pd.DataFrame:
    """Zero-depth intervals, in profile order."""
    gaps = profile[profile["depth"] == 0][["contig", "start", "end"]]
    return gaps.reset_index(drop=True)


def summarise_coverage(profile: pd.DataFrame) -> CoverageSummary:
    """Min, max and length-weighted mean depth plus gap count and size."""
    gaps = extract_gaps(profile)
    gap_length = int((gaps["end"] - gaps["start"]).sum()) if not gaps.empty else 0
    if profile.empty:
        return CoverageSummary(0.0, 0.0, 0.0, 0, 0)
    lengths = (profile["end"] - profile["start"]).to_numpy()
    depths = profile["depth"].to_numpy()
    mean_depth = float(np.average(depths, weights=lengths)) if lengths.sum() else 0.0
    return CoverageSummary(
        min_depth=float(depths.min()),
        max_depth=float(depths.max()),
        mean_depth=round(mean_depth, 2),
        gap_count=int(len(gaps)),
        gap_length=gap_length,
    )


def write_bed(df: pd.DataFrame, path: Path) -> None:
    """Write a frame as headerless tab-separated BED/bedGraph."""
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, sep="\t", header=False, index=False)


def plot_coverage(profile: pd.DataFrame, gaps: pd.DataFrame, figure_path: Path) -> Path:
    """Step plot of depth along the reference with gaps shaded."""
    try:
        import matplotlib

        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
    except ImportError as err:
        raise ImportError("matplotlib is required for the coverage plot.") from err

    figure_path.parent.mkdir(parents=True, exist_ok=True)
    contigs = list(dict.fromkeys(profile["contig"]))
    fig, axes = plt.subplots(max(1, len(contigs)), 1, figsize=(12, 3 * max(1, len(contigs))), squeeze=False)
    for ax, contig in zip(axes[:, 0], contigs):
        part = profile[profile["contig"] == contig]
        x = np.append(part["start"].to_numpy(), part["end"].to_numpy()[-1:])
        y = np.append(part["depth"].to_numpy(), part["depth"].to_numpy()[-1:])
        ax.step(x, y, where="post", color="tab:blue", linewidth=0.8)
        for start, end in gaps[gaps["contig"] == contig][["start", "end"]].itertuples(index=False):
            ax.axvspan(start, end, color="tab:red", alpha=0.3, linewidth=0)
        ax.set_title(contig)
        ax.set_xlabel("Position (bp)")
        ax.set_ylabel("Depth")
    fig.tight_layout()
    fig.savefig(figure_path, dpi=150)
    plt.close(fig)
    return figure_path


def analyse_coverage(
    cohort_bam: Path,
    reference_fai: Path,
    contig_lengths: Dict[str, int],
    coverage_dir: Path,
    runner: ToolRunner,
) -> Tuple[pd.DataFrame, pd.DataFrame, CoverageSummary, Path]:
    """Run bedtools genomecov, complete the profile and write coverage/gap files.

    Returns the profile, the gap set, its summary and the gaps BED path.
    """
    coverage_dir.mkdir(parents=True, exist_ok=True)
    raw_path = coverage_dir / "coverage.raw.bedgraph"
    bedgraph_path = coverage_dir / "coverage.bedgraph"
    gaps_path = coverage_dir / "gaps.bed"

    runner.invoke(
        "bedtools",
        ["genomecov", "-ibam", cohort_bam, "-g", reference_fai, "-bga"],
        capture_stdout_to=raw_path,
    )
    profile = complete_profile(read_bedgraph(raw_path), contig_lengths)
    write_bed(profile, bedgraph_path)
    gaps = extract_gaps(profile)
    write_bed(gaps, gaps_path)
    summary = summarise_coverage(profile)

    logging.info(
        "Coverage: min %.2f, max %.2f, mean %.2f",
        summary.min_depth,
        summary.max_depth,
        summary.mean_depth,
    )
    logging.info("Gaps: %d interval(s), %d bp to mask", summary.gap_count, summary.gap_length)
    if not profile.empty:
        plot_coverage(profile, gaps, coverage_dir / "coverage.png")
    return profile, gaps, summary, gaps_path
