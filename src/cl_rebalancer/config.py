"""Application settings and the persisted position config.

``Settings`` holds process-level options (network, storage, dry-run,
metrics) loaded from a `.env` file and the environment.

``PositionConfig`` is the small JSON document the orchestrator keeps in
sync with the chain (pool id, managed position id, trigger threshold,
band width). ``ConfigStore`` merges it with environment overrides
(process env > `.env` > JSON file), validates it once and writes it back
whenever the position id changes.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cl_rebalancer.errors import ConfigMissingRequiredField

logger = structlog.get_logger()

ChainName = Literal["osmosis", "sui"]
SUPPORTED_CHAINS = ("osmosis", "sui")


class Settings(BaseSettings):
    """Global configuration for the rebalancer process.

    Values are loaded from a `.env` file in the working directory.
    Any field can be overridden by setting the corresponding environment variable.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Network (ネットワーク) ---------------------------------------------
    environment: str = "mainnet"  # "mainnet" または "testnet"
    chain: str = "osmosis"  # 流動性ポジションを置くチェーン ("osmosis" / "sui")
    config_file: str = "config.json"  # ポジション設定(JSON)のパス

    # --- Storage & Logging (保存先とログ) -----------------------------------
    db_url: str = "sqlite+aiosqlite:///./transactions.db"  # 取引履歴を保存するデータベース
    log_level: str = "INFO"  # ログレベル (DEBUG, INFO, WARNING, ERROR)

    # --- Execution (実行モード) ---------------------------------------------
    dry_run: bool = True  # Trueだとチェーンに送信せず仮想ウォレットでシミュレーション
    client_factory: str = ""  # 本番用クライアントを生成する "module:callable"

    # --- Watch mode (監視モード) --------------------------------------------
    watch_interval_sec: float = 300.0  # 監視モードでの実行間隔(秒)
    retry_min_delay_sec: float = 2.0  # エラー時の最小待機時間(秒)
    retry_multiplier: float = 2.0  # 連続エラーごとの待機時間の倍率

    # --- Rebalancing (リバランス) -------------------------------------------
    price_drift_warning: float = 0.01  # リバランス中の価格変動がこれを超えたら警告
    rebalance_tolerance: float = 0.001  # 50/50からの許容誤差 (0.1%)

    # --- Dry-Run seeds (Dry-Run用の初期値) ----------------------------------
    dry_run_token0_balance: float = 1000.0  # token0の初期仮想残高(表示単位)
    dry_run_token1_balance: float = 0.0  # token1の初期仮想残高(表示単位)
    dry_run_native_balance: float = 50.0  # 各チェーンのガス用ネイティブトークン残高
    dry_run_pool_price: float = 2.0  # プールの初期価格 (token0あたりのtoken1, 表示単位)
    dry_run_venue_spread: float = 0.002  # スワップ先の価格とプール価格の乖離

    # --- WandB Logging (Weights & Biasesを用いたログ収集) -------------------
    wandb_enabled: bool = False  # TrueにするとWandBへ実行結果を送信
    wandb_project: str = "cl-rebalancer"  # WandB上のプロジェクト名
    wandb_entity: str = ""  # WandBのユーザー名またはチーム名 (任意)
    wandb_api_key: str = ""  # WandBのAPIキー (設定されていれば自動で有効化されます)

    @model_validator(mode="after")
    def _enable_wandb_if_key_present(self) -> Settings:
        if self.wandb_api_key and not self.wandb_enabled:
            self.wandb_enabled = True
        return self


class PositionConfig(BaseModel):
    """Persisted state of the managed position (camelCase on disk)."""

    model_config = ConfigDict(populate_by_name=True)

    pool_id: str = Field(default="", alias="poolId")
    position_id: str = Field(default="", alias="positionId")
    rebalance_threshold_percent: float = Field(default=0, alias="rebalanceThresholdPercent")
    position_band_percentage: float = Field(default=0, alias="positionBandPercentage")
    chain: ChainName = "osmosis"

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class PositionEnvOverrides(BaseSettings):
    """Environment values that take precedence over the JSON file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    pool_id: Optional[str] = None
    rebalance_threshold_percent: Optional[float] = None
    position_band_percentage: Optional[float] = None
    chain: Optional[str] = None


_REQUIRED_FIELDS = (
    ("pool_id", "poolId", "POOL_ID"),
    ("rebalance_threshold_percent", "rebalanceThresholdPercent", "REBALANCE_THRESHOLD_PERCENT"),
    ("position_band_percentage", "positionBandPercentage", "POSITION_BAND_PERCENTAGE"),
)


class ConfigStore:
    """Loads, validates and persists ``PositionConfig``."""

    def __init__(self, path: Union[str, Path], env_file: Optional[Union[str, Path]] = ".env") -> None:
        self.path = Path(path)
        self.env_file = env_file
        self.config: Optional[PositionConfig] = None

    def _read_file(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            logger.info("config_file_not_found", path=str(self.path))
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("config_file_unreadable", path=str(self.path), error=str(exc))
            return {}
        if not isinstance(data, dict):
            logger.warning("config_file_not_an_object", path=str(self.path))
            return {}
        logger.info("config_file_loaded", path=str(self.path))
        return data

    def _read_env(self) -> PositionEnvOverrides:
        return PositionEnvOverrides(_env_file=self.env_file)  # type: ignore[call-arg]

    def load(self) -> PositionConfig:
        """Merge file and environment, validate, and write back if changed."""
        raw = self._read_file()
        config_file_found = raw is not None
        try:
            from_file = PositionConfig.model_validate(raw or {})
        except ValidationError as exc:
            logger.warning("config_file_invalid", path=str(self.path), error=str(exc))
            from_file = PositionConfig()

        env = self._read_env()
        merged = from_file.model_copy(
            update={
                key: value
                for key, value in (
                    ("pool_id", env.pool_id or None),
                    ("rebalance_threshold_percent", env.rebalance_threshold_percent),
                    ("position_band_percentage", env.position_band_percentage),
                    ("chain", env.chain.lower() if env.chain and env.chain.lower() in SUPPORTED_CHAINS else None),
                )
                if value is not None
            }
        )

        missing: List[str] = [
            f"Config: {json_key} | Env Variable: {env_key}"
            for attr, json_key, env_key in _REQUIRED_FIELDS
            if not getattr(merged, attr)
        ]
        if missing:
            raise ConfigMissingRequiredField(missing, config_file_found)

        if not config_file_found or raw != merged.to_json_dict():
            try:
                self.save(merged)
                logger.info(
                    "config_file_updated" if config_file_found else "config_file_created",
                    path=str(self.path),
                )
            except OSError as exc:
                logger.warning("config_file_write_failed", path=str(self.path), error=str(exc))

        self.config = merged
        return merged

    def save(self, config: PositionConfig) -> None:
        """Atomically replace the JSON file with ``config``."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(config.to_json_dict(), handle, indent=2)
                handle.write("\n")
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        self.config = config

    def set_position_id(self, position_id: str) -> PositionConfig:
        if self.config is None:
            raise RuntimeError("ConfigStore.load() must run before updating the position id")
        updated = self.config.model_copy(update={"position_id": position_id})
        self.save(updated)
        logger.info("position_id_persisted", position_id=position_id or None)
        return updated
