"""Jinja2 sources for the files handed to the broker."""

CONFIG_TEMPLATE = """\
#   logging
log_dest                stderr
log_type                error
log_type                warning
log_type                notice
log_type                information
log_type                subscribe
log_type                unsubscribe
log_type                websockets
log_type                debug
websockets_log_level    2
connection_messages     true
log_timestamp           true
log_timestamp_format    [%Y-%m-%d %H:%M:%S]

#   internals
sys_interval            1
websockets_headers_size 2048

{% if auth == "builtin" %}
#   security (built-in)
acl_file         ./{{ acl_file }}
password_file    ./{{ passwd_file }}
allow_anonymous  true
{% else %}
#   security (plugin-based)
plugin                       {{ plugin_path }}
auth_opt_backends            files
auth_opt_files_password_path ./{{ passwd_file }}
auth_opt_files_acl_path      ./{{ acl_file }}
auth_opt_allow_anonymous     true
{% endif %}

#   persistence
{% if persistence %}
persistence          true
persistence_location {{ persistence_location }}
persistence_file     mosquitto.db
autosave_interval    1800
autosave_on_changes  false
{% else %}
persistence          false
autosave_on_changes  false
{% endif %}
{% if custom %}

{{ custom }}
{% endif %}
{% for entry in listeners %}

#   listener for "{{ entry.protocol }}"
listener         {{ entry.port }} {{ entry.bind }}
max_connections  -1
set_tcp_nodelay  true
protocol         {{ "websockets" if entry.websockets else "mqtt" }}
{% if entry.secure %}
certfile            ./{{ cert_file }}
keyfile             ./{{ key_file }}
require_certificate false
{% endif %}
{% endfor %}
"""

ACL_TEMPLATE = """\
#   shared/anonymous ACL list
topic   read       $SYS/#
pattern write      $SYS/broker/connection/%c/state
pattern read       peer/%c
{% for entry in passwd %}

#   user ACL list
user    {{ entry.username }}
topic   readwrite  {{ entry.username }}/#
topic   read       {{ entry.username }}/$share/#
topic   write      peer/#
{% endfor %}
"""
