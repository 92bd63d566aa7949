"""Shared constants across the package."""

# Truth value strings
YES_VALUES = ('1', 'TRUE', 'YES', 'ON', 'true', 'yes', 'on')

# Default connection values
DEFAULT_PORT = 389
DEFAULT_SSL_PORT = 636
DEFAULT_TIMEOUT = 60

# Query defaults
DEFAULT_FILTER = '(objectClass=*)'
DEFAULT_ATTRIBUTES = [
    'objectGUID',
    'displayName',
]

# Always requested unless the caller asks for '*' alone
REQUIRED_ATTRIBUTES = [
    'sAMAccountName',
    'objectGUID',
    'mail',
    'memberOf',
    'pwdLastSet',
]

ALL_ATTRIBUTES = '*'

# Root DSE attributes probed for the base DN, in order
ROOT_DSE_DEFAULT_CONTEXT = 'defaultNamingContext'
ROOT_DSE_NAMING_CONTEXTS = 'namingContexts'

# Keys of the raw result structure
COUNT_KEY = 'count'
ATTRIBUTES_KEY = '__attributes'
DN_KEY = 'dn'

# Session keys written by the auth adapter
SESSION_USERNAME_KEY = 'username'
SESSION_LOGIN_HASH_KEY = 'login_hash'
