"""
Shipped models, addressable by short name or type string.
"""
from obs_provision.errors import UnknownMethod
from obs_provision.models import agent, hub

MODELS = {
    agent.model.name: agent.model,
    hub.model.name: hub.model,
}


def get_model(name: str):
    """Look up a model by short name ('agent') or type ('@user/monitoring/agent')"""
    for model in MODELS.values():
        if name in (model.name, model.type):
            return model
    raise UnknownMethod(f'Unknown model: {name}. Must be one of {sorted(MODELS)}')


__all__ = ['MODELS', 'get_model']
