"""Modelos y entidades del dominio.

Estructuras de datos puras (Pydantic v2): comandos, rutas, resultados y
acciones pendientes de MFA. El dominio no conoce HTTP ni la CLI.
"""
