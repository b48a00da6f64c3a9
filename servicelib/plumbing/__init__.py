"""
Low-level APIs for talking to a host's service control manager.

Each public function in this module should:

- perform a single observation or request, without retrying
- raise an exception on any failures of the underlying control call
- accept the target host as an argument rather than assuming the local machine

Each function also falls into one of two groups:

- getters (prefixed with `get_` or named as queries, returns a value directly, does not modify
  state)
- actions (request a transition, may modify state)
"""
