"""
Higher-level methods to act on services.

Each public function in this module should:

- perform a complete action, as needed by a script or user request
- avoid transition requests unless the observed state calls for one
- re-observe state after every request rather than assuming it worked
"""
