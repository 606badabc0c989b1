"""
Servicios de pedidos: contrato del almacén y sincronizador de estados.
"""
