"""Interfaces/abstracciones del Core.

Contratos (Protocol) que implementan los adaptadores concretos: transporte
HTTP y almacenamiento de conversaciones.
"""
