"""SPIR-V capability names accepted by `--capability`.

The backend parses these names itself; this list is what `spvforge show
capabilities` prints.
"""

SPIRV_CAPABILITIES = (
    "Matrix",
    "Shader",
    "Geometry",
    "Tessellation",
    "Addresses",
    "Linkage",
    "Kernel",
    "Vector16",
    "Float16Buffer",
    "Float16",
    "Float64",
    "Int64",
    "Int64Atomics",
    "ImageBasic",
    "ImageReadWrite",
    "ImageMipmap",
    "Pipes",
    "Groups",
    "DeviceEnqueue",
    "LiteralSampler",
    "AtomicStorage",
    "Int16",
    "TessellationPointSize",
    "GeometryPointSize",
    "ImageGatherExtended",
    "StorageImageMultisample",
    "UniformBufferArrayDynamicIndexing",
    "SampledImageArrayDynamicIndexing",
    "StorageBufferArrayDynamicIndexing",
    "StorageImageArrayDynamicIndexing",
    "ClipDistance",
    "CullDistance",
    "ImageCubeArray",
    "SampleRateShading",
    "ImageRect",
    "SampledRect",
    "GenericPointer",
    "Int8",
    "InputAttachment",
    "SparseResidency",
    "MinLod",
    "Sampled1D",
    "Image1D",
    "SampledCubeArray",
    "SampledBuffer",
    "ImageBuffer",
    "ImageMSArray",
    "StorageImageExtendedFormats",
    "ImageQuery",
    "DerivativeControl",
    "InterpolationFunction",
    "TransformFeedback",
    "GeometryStreams",
    "StorageImageReadWithoutFormat",
    "StorageImageWriteWithoutFormat",
    "MultiViewport",
    "SubgroupDispatch",
    "NamedBarrier",
    "PipeStorage",
    "GroupNonUniform",
    "GroupNonUniformVote",
    "GroupNonUniformArithmetic",
    "GroupNonUniformBallot",
    "GroupNonUniformShuffle",
    "GroupNonUniformShuffleRelative",
    "GroupNonUniformClustered",
    "GroupNonUniformQuad",
    "ShaderLayer",
    "ShaderViewportIndex",
    "DrawParameters",
    "MultiView",
    "VariablePointersStorageBuffer",
    "VariablePointers",
    "StorageBuffer16BitAccess",
    "UniformAndStorageBuffer16BitAccess",
    "StoragePushConstant16",
    "StorageInputOutput16",
    "StorageBuffer8BitAccess",
    "UniformAndStorageBuffer8BitAccess",
    "StoragePushConstant8",
    "DenormPreserve",
    "DenormFlushToZero",
    "SignedZeroInfNanPreserve",
    "RoundingModeRTE",
    "RoundingModeRTZ",
    "RuntimeDescriptorArray",
    "ShaderNonUniform",
    "InputAttachmentArrayDynamicIndexing",
    "UniformTexelBufferArrayDynamicIndexing",
    "StorageTexelBufferArrayDynamicIndexing",
    "UniformBufferArrayNonUniformIndexing",
    "SampledImageArrayNonUniformIndexing",
    "StorageBufferArrayNonUniformIndexing",
    "StorageImageArrayNonUniformIndexing",
    "VulkanMemoryModel",
    "VulkanMemoryModelDeviceScope",
    "PhysicalStorageBufferAddresses",
    "DemoteToHelperInvocation",
    "Int64ImageEXT",
    "FragmentShadingRateKHR",
    "RayQueryKHR",
    "RayTracingKHR",
    "RayTraversalPrimitiveCullingKHR",
    "MeshShadingEXT",
    "MeshShadingNV",
    "FragmentBarycentricKHR",
    "ComputeDerivativeGroupQuadsNV",
    "ComputeDerivativeGroupLinearNV",
    "ShaderClockKHR",
    "AtomicFloat32AddEXT",
    "AtomicFloat64AddEXT",
    "IntegerFunctions2INTEL",
)
