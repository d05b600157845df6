"""
Workflow engine: templates are step graphs, instances are running copies.

Steps progress by order_index; edges are stored for the designer only.
"""
