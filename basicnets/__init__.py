"""
basicnets package
~~~~~~~~~~~~~~~~~

Small dense neural networks for the two classic starter problems:
Fashion MNIST clothing classification and Boston housing price regression.
Contains the sequential model implementation, dataset loaders,
preprocessing, plotting, model persistence, and API server.
"""

__version__ = "1.0.0"
