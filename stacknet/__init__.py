"""
stacknet package
~~~~~~~~~~~~~~~~

Greedy layer-wise training of deep feed-forward networks.
Contains the network implementation, the layer-wise learner with its error
history, binary persistence and comparison of learners, plotting, the
SQLite learner catalogue, and the API server.
"""

__version__ = "1.0.0"
