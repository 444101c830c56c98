"""
Capability modules exposed to guest scripts: log, params, http, binary.
"""

from scriptstep.engines.script.modules.binary import make_binary_module
from scriptstep.engines.script.modules.http import make_http_module
from scriptstep.engines.script.modules.log import make_log_module
from scriptstep.engines.script.modules.params import make_params_module

__all__ = [
    "make_binary_module",
    "make_http_module",
    "make_log_module",
    "make_params_module",
]
