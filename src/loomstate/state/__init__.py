"""状态折叠与归一化。"""

from loomstate.state.cast import (
    apply_cast_intent,
    create_empty_cast,
    get_all_characters_in_cast,
    get_character_layer,
    promote_character_to,
)
from loomstate.state.change_set import (
    NormalizeReport,
    RejectedEntry,
    compose_change_set,
    create_empty_change_set,
    normalize_change_set,
    parse_change_set,
    parse_variable_path,
)
from loomstate.state.entities import build_normalized_entities, characters_of
from loomstate.state.reducer import (
    apply_change_set,
    clone_state,
    create_initial_state,
    create_initial_state_from_config,
    get_value_by_path,
)
from loomstate.state.symbolic import SymbolicResolution, clamp_to_range, resolve_symbolic

__all__ = [
    "NormalizeReport",
    "RejectedEntry",
    "SymbolicResolution",
    "apply_cast_intent",
    "apply_change_set",
    "build_normalized_entities",
    "characters_of",
    "clamp_to_range",
    "clone_state",
    "compose_change_set",
    "create_empty_cast",
    "create_empty_change_set",
    "create_initial_state",
    "create_initial_state_from_config",
    "get_all_characters_in_cast",
    "get_character_layer",
    "get_value_by_path",
    "normalize_change_set",
    "parse_change_set",
    "parse_variable_path",
    "promote_character_to",
    "resolve_symbolic",
]
