"""
Capa de dominio del gateway de pedidos.

Contiene los tipos de resultado y cambios que produce la sincronización
de documentos de pedidos.
"""
