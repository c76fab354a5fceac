from certsh.certsh_runtime import VERSION as __version__
from certsh.certsh_runtime import ScriptRunner, ExecutionResult, CertHost, StdLib, resolver, find_label
from certsh.certsh_dispatch import verb, Dispatcher, CommandContext, Directive
from certsh.certsh_datatypes import Variable, VariableTable, Frame, CallStack, InterpreterContext
from certsh.certsh_json import JsonLookup, ParseResult, Property, PropertyType, parse
from certsh.certsh_tokenizer import tokenize
from certsh.certsh_config import Config
