"""
scriptstep: sandboxed script execution for workflow steps.
"""
