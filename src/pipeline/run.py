import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import wandb
import logging
from datetime import datetime
import hydra
from omegaconf import DictConfig, OmegaConf
from src.pipeline.driver import run_pipeline

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger("pipeline")


def _resolve_paths(config: dict) -> dict:
    """Anchors relative data/artifact paths at the project root (hydra changes the cwd)."""
    for section, key in [
        ("data_source", "tracks_path"),
        ("data_source", "artists_path"),
        ("data_validation", "report_path"),
        ("artifacts", "metrics_path"),
        ("plots", "output_dir"),
    ]:
        value = config.get(section, {}).get(key)
        if value and not Path(value).is_absolute():
            config[section][key] = str(PROJECT_ROOT / value)
    return config


@hydra.main(config_path=str(PROJECT_ROOT),
            config_name="config", version_base=None)
def main(cfg: DictConfig) -> None:
    dt_str = datetime.now().strftime("%Y%m%d_%H%M%S")
    run_name = f"pipeline_{dt_str}"
    config = _resolve_paths(OmegaConf.to_container(cfg, resolve=True))
    run = None
    try:
        run = wandb.init(
            project=cfg.main.WANDB_PROJECT,
            entity=cfg.main.WANDB_ENTITY,
            job_type="pipeline",
            name=run_name,
            config=config,
            tags=["pipeline"]
        )
        logger.info("Started WandB run: %s", run_name)
        result = run_pipeline(config)
        for variant in result.variants:
            if variant.test_report is None:
                continue
            for metric in ("me", "rmse", "mae", "mpe", "mape"):
                wandb.log({f"{variant.name}/test_{metric}": getattr(variant.test_report, metric)})
            wandb.log({f"{variant.name}/n_predictors": len(variant.best.model.formula.predictors)})
        wandb.log({"winner": result.winner.name, "pipeline_status": "completed"})
    except Exception as e:
        logger.exception("Failed during pipeline run")
        if run is not None:
            wandb.log({"pipeline_status": "failed", "error": str(e)})
            run.alert(title="Pipeline Error", text=str(e))
        raise
    finally:
        if wandb.run is not None:
            wandb.finish()
            logger.info("WandB run finished")


if __name__ == "__main__":
    main()
