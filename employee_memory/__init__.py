"""
Employee Memory

A private, semantically searchable memory for each member of a fixed roster
of agent employees: experiences, knowledge, decisions and interactions that
can be retrieved by similarity, summarized into task context and analyzed
into per-domain expertise.
"""

__version__ = "0.1.0"

__author__ = 'Employee Memory Team'
