"""
Wasm Runner - on-demand sandboxed WebAssembly execution

POST a WebAssembly payload, get back what it printed.
"""

__version__ = "0.1.0"
