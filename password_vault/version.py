"""Password Vault Meta information.
   Password Vault seals vault contents under a master password and
   synchronizes the sealed blob with a remote object store.
"""
__title__ = 'password_vault'
__description__ = (
   'Encryption and synchronization core for a client-side '
   'password vault.'
)
__version__ = '0.1.0'
__license__ = 'Apache-2.0'
