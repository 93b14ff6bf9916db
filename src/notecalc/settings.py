# -----------------------------------------------------------------------------
# Engine settings
# Purpose:
#   The options the calculation engine reads on every evaluation pass.
#   Values come from the environment (optionally a .env file) or are set by
#   the caller; they are never copied into computed variables.
# -----------------------------------------------------------------------------

from __future__ import annotations
import os
from typing import Literal, Optional
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class EngineSettings(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    # If false the note scope is cleared before every block evaluation
    auto_recalculate: bool = True
    unit_system: Literal["SI", "US"] = "SI"
    # Decimal places (the settings UI calls this "significant figures")
    precision: int = Field(default=4, ge=0, le=12)
    global_variables_enabled: bool = False
    equation_rendering_enabled: bool = False
    # YAML file backing the global constants; None keeps them in memory
    constants_path: Optional[str] = None

    @property
    def format_key(self):
        return (self.unit_system, self.precision)

    @classmethod
    def from_env(cls) -> "EngineSettings":
        # Load .env for local configuration, then read NOTECALC_* variables
        load_dotenv()
        return cls(
            auto_recalculate=_env_bool("NOTECALC_AUTO_RECALC", True),
            unit_system=os.getenv("NOTECALC_UNIT_SYSTEM", "SI").strip().upper(),
            precision=int(os.getenv("NOTECALC_PRECISION", "4")),
            global_variables_enabled=_env_bool("NOTECALC_GLOBAL_VARS", False),
            equation_rendering_enabled=_env_bool("NOTECALC_EQUATIONS", False),
            constants_path=os.getenv("NOTECALC_CONSTANTS_PATH") or None,
        )
