"""
Portfolio Planner - Feature Flags System
========================================

Flags for the dependency schedule engine (CPM + change propagation).

Uso:
    from portfolio_backend.feature_flags import FeatureFlags, OrderingStrategy

    config = FeatureFlags.get_config()
    if config.ordering_strategy == OrderingStrategy.FIXPOINT:
        ...

Configuração via variáveis de ambiente:
    PORTFOLIO_ORDERING_STRATEGY=fixpoint
    PORTFOLIO_CRITICAL_SLACK_DAYS=0
    PORTFOLIO_CONSTRAIN_MILESTONE_MOVES=false
"""

from __future__ import annotations

import os
import logging
from enum import Enum
from dataclasses import dataclass
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# ENGINE ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class OrderingStrategy(str, Enum):
    """
    How the CPM passes order the dependency list.

    TOPOLOGICAL: explicit topological order, back-edges of cycles excluded
    FIXPOINT: repeated relaxation over the input order, bounded pass count
    """
    TOPOLOGICAL = "topological"
    FIXPOINT = "fixpoint"


class UndoScope(str, Enum):
    """
    What `undo()` restores.

    INITIATING: only the edited entity and the milestones it directly moved
    CASCADE: additionally every entity the propagation reached
    """
    INITIATING = "initiating"
    CASCADE = "cascade"


# ═══════════════════════════════════════════════════════════════════════════════
# FEATURE FLAGS CLASS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class ScheduleEngineConfig:
    """
    Configuração do schedule engine.

    Defaults reproduce the behaviour of the Gantt view.
    """
    ordering_strategy: OrderingStrategy = OrderingStrategy.TOPOLOGICAL
    max_fixpoint_passes: int = 0                # 0 = node count + 1
    critical_slack_threshold_days: int = 0

    prefer_actual_milestone_dates: bool = True  # violation checks
    constrain_milestone_moves: bool = True      # clamp into project / neighbours
    undo_scope: UndoScope = UndoScope.CASCADE

    enable_schedule_api: bool = True


class FeatureFlags:
    """
    Singleton para gestão de feature flags.

    Carrega configuração de variáveis de ambiente ou usa defaults.

    Uso:
        config = FeatureFlags.get_config()
        FeatureFlags.set_strategy("fixpoint")
        FeatureFlags.reset()
    """

    _instance: Optional[ScheduleEngineConfig] = None

    @classmethod
    def _load_from_env(cls) -> ScheduleEngineConfig:
        """Carrega configuração de variáveis de ambiente."""
        config = ScheduleEngineConfig()

        env_mapping = {
            "PORTFOLIO_ORDERING_STRATEGY": ("ordering_strategy", OrderingStrategy),
            "PORTFOLIO_UNDO_SCOPE": ("undo_scope", UndoScope),
        }

        for env_var, (attr_name, enum_class) in env_mapping.items():
            value = os.environ.get(env_var)
            if value:
                try:
                    setattr(config, attr_name, enum_class(value.lower()))
                    logger.info(f"Feature flag {attr_name} = {value}")
                except ValueError:
                    logger.warning(f"Invalid value for {env_var}: {value}")

        int_mapping = {
            "PORTFOLIO_MAX_FIXPOINT_PASSES": "max_fixpoint_passes",
            "PORTFOLIO_CRITICAL_SLACK_DAYS": "critical_slack_threshold_days",
        }

        for env_var, attr_name in int_mapping.items():
            value = os.environ.get(env_var)
            if value:
                try:
                    setattr(config, attr_name, int(value))
                except ValueError:
                    logger.warning(f"Invalid value for {env_var}: {value}")

        bool_mapping = {
            "PORTFOLIO_PREFER_ACTUAL_MILESTONE_DATES": "prefer_actual_milestone_dates",
            "PORTFOLIO_CONSTRAIN_MILESTONE_MOVES": "constrain_milestone_moves",
            "PORTFOLIO_ENABLE_SCHEDULE_API": "enable_schedule_api",
        }

        for env_var, attr_name in bool_mapping.items():
            value = os.environ.get(env_var)
            if value:
                setattr(config, attr_name, value.lower() in ("true", "1", "yes"))

        return config

    @classmethod
    def get_config(cls) -> ScheduleEngineConfig:
        """Obtém configuração atual."""
        if cls._instance is None:
            cls._instance = cls._load_from_env()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset para recarregar config."""
        cls._instance = None

    @classmethod
    def get_ordering_strategy(cls) -> OrderingStrategy:
        return cls.get_config().ordering_strategy

    @classmethod
    def set_strategy(cls, value: str) -> bool:
        """
        Define ordering strategy em runtime (para testes).

        Returns:
            True se sucesso
        """
        config = cls.get_config()
        try:
            config.ordering_strategy = OrderingStrategy(value.lower())
            logger.info(f"Ordering strategy set to {value}")
            return True
        except ValueError:
            logger.warning(f"Invalid ordering strategy {value}")
            return False

    @classmethod
    def to_dict(cls) -> Dict[str, Any]:
        """Exporta configuração como dict."""
        config = cls.get_config()
        return {
            "engines": {
                "ordering_strategy": config.ordering_strategy.value,
                "max_fixpoint_passes": config.max_fixpoint_passes,
                "critical_slack_threshold_days": config.critical_slack_threshold_days,
                "undo_scope": config.undo_scope.value,
            },
            "features": {
                "prefer_actual_milestone_dates": config.prefer_actual_milestone_dates,
                "constrain_milestone_moves": config.constrain_milestone_moves,
                "schedule_api": config.enable_schedule_api,
            },
        }
