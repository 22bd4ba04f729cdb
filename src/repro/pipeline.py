from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from repro.core.config import PipelineConfig
from repro.core.errors import ReproError
from repro.model import fit as fit_stage
from repro.prepare import clean as prepare_stage
from repro.viz import figures as figures_stage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StageOutcome:
    name: str
    ok: bool
    message: str
    artifacts: List[Path] = field(default_factory=list)


@dataclass
class PipelineReport:
    stages: List[StageOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.stages) and all(s.ok for s in self.stages)

    def failed(self) -> Optional[StageOutcome]:
        for s in self.stages:
            if not s.ok:
                return s
        return None


def run_prepare(cfg: PipelineConfig) -> List[Path]:
    res = prepare_stage.prepare(cfg.paths.raw_data, cfg)
    return [res.path]


def run_fit(cfg: PipelineConfig) -> List[Path]:
    res = fit_stage.fit(cfg.paths.canonical_path(), cfg)
    return list(res.paths.values())


def run_figures(cfg: PipelineConfig) -> List[Path]:
    artifacts = figures_stage.generate_figures(cfg.paths.canonical_path(), cfg.paths.diagnostics_path(), cfg)
    return [a.path for a in artifacts]


STAGES: List[Tuple[str, Callable[[PipelineConfig], List[Path]]]] = [
    (prepare_stage.STAGE_NAME, run_prepare),
    (fit_stage.STAGE_NAME, run_fit),
    (figures_stage.STAGE_NAME, run_figures),
]


def run_pipeline(cfg: PipelineConfig) -> PipelineReport:
    """Run prepare -> fit -> figures, stopping at the first fatal error.

    Artifacts written by earlier stages are left in place when a later stage fails.
    """

    report = PipelineReport()
    for name, step in STAGES:
        logger.info("Running stage '%s'", name)
        try:
            artifacts = step(cfg)
        except ReproError as e:
            logger.error("Stage '%s' failed: %s", name, e)
            report.stages.append(StageOutcome(name=name, ok=False, message=str(e)))
            break
        report.stages.append(
            StageOutcome(name=name, ok=True, message=f"{len(artifacts)} artifact(s) written", artifacts=artifacts)
        )
    return report
