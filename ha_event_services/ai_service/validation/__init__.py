from .validator import SuggestionValidator, ValidatorConfig, action_domains, iter_config_actions

__all__ = ["SuggestionValidator", "ValidatorConfig", "action_domains", "iter_config_actions"]
