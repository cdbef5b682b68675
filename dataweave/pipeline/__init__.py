"""Simulated miner runs recorded through the provenance core"""

from dataweave.pipeline.miner_run import (
    DEFAULT_MINER_CONFIGS,
    MinerConfig,
    MinerRunLog,
    MinerRunPipeline,
    RunUpdate,
)
