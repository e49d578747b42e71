'''
katamanager - provision Kata Containers runtime classes on a node
'''

__version__ = '0.1.0'
